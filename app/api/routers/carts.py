#app/api/routers/carts.py
from fastapi import APIRouter, Depends, Response, status

from app.api.dependencies import get_cart_service, get_current_user_id
from app.domain.cart import Cart
from app.domain.schemas import (
    AddItemIn,
    CartExpiryOut,
    CartOut,
    ErrorOut,
    UpdateItemIn,
)
from app.services.cart_service import CartService

# ksztalt bledu z app/api/errors.py, do dokumentacji openapi
ERROR_RESPONSES = {
    code: {"model": ErrorOut} for code in (400, 401, 403, 404, 409, 422, 503)
}

router = APIRouter(prefix="/cart", tags=["cart"], responses=ERROR_RESPONSES)


def to_cart_out(cart: Cart, svc: CartService) -> dict:
    #dict przyksztalcany w jsona
    return {
        "cart_id": cart.id,
        "user_id": cart.user_id,
        "status": cart.status.value,
        "session_id": cart.session_id,
        "items": [
            {
                "article_id": i.article_id,
                "article_name": i.article_name,
                "quantity": i.quantity,
                "price": i.price,
                "subtotal": i.subtotal,
            }
            for i in cart.items
        ],
        "total": cart.total,
        "version": cart.version,
        "last_activity": cart.last_activity,
        "created_at": cart.created_at,
        "expires_at": cart.expires_at(svc.policy.ttl),
    }


@router.get("", response_model=CartOut)
def get_active_cart(
    user_id: str = Depends(get_current_user_id),
    svc: CartService = Depends(get_cart_service),
):
    # jak nie ma aktywnego koszyka, to go zakladamy
    return to_cart_out(svc.get_or_create_active_cart(user_id), svc)


@router.post("", response_model=CartOut, status_code=status.HTTP_201_CREATED)
def create_cart(
    user_id: str = Depends(get_current_user_id),
    svc: CartService = Depends(get_cart_service),
):
    return to_cart_out(svc.create_cart(user_id), svc)


@router.post("/items", response_model=CartOut, status_code=status.HTTP_201_CREATED)
def add_item(
    payload: AddItemIn,
    user_id: str = Depends(get_current_user_id),
    svc: CartService = Depends(get_cart_service),
):
    cart = svc.add_item(
        user_id=user_id,
        article_id=payload.article_id,
        article_name=payload.article_name,
        quantity=payload.quantity,
        price=payload.price,
    )
    return to_cart_out(cart, svc)


@router.put("/items", response_model=CartOut)
def update_item_quantity(
    payload: UpdateItemIn,
    user_id: str = Depends(get_current_user_id),
    svc: CartService = Depends(get_cart_service),
):
    cart = svc.update_item_quantity(user_id, payload.article_id, payload.quantity)
    return to_cart_out(cart, svc)


@router.delete("/items/{article_id}", response_model=CartOut)
def remove_item(
    article_id: int,
    user_id: str = Depends(get_current_user_id),
    svc: CartService = Depends(get_cart_service),
):
    return to_cart_out(svc.remove_item(user_id, article_id), svc)


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
def clear_cart(
    user_id: str = Depends(get_current_user_id),
    svc: CartService = Depends(get_cart_service),
):
    svc.clear_cart(user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/abandon", status_code=status.HTTP_204_NO_CONTENT)
def abandon_cart(
    user_id: str = Depends(get_current_user_id),
    svc: CartService = Depends(get_cart_service),
):
    svc.abandon_cart(user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/complete", response_model=CartOut)
def complete_cart(
    user_id: str = Depends(get_current_user_id),
    svc: CartService = Depends(get_cart_service),
):
    return to_cart_out(svc.complete_cart(user_id), svc)


@router.get("/status/{cart_status}", response_model=CartOut)
def get_cart_by_status(
    cart_status: str,
    user_id: str = Depends(get_current_user_id),
    svc: CartService = Depends(get_cart_service),
):
    return to_cart_out(svc.get_cart_by_status(user_id, cart_status), svc)


@router.get("/expiry", response_model=CartExpiryOut)
def get_cart_expiry(
    user_id: str = Depends(get_current_user_id),
    svc: CartService = Depends(get_cart_service),
):
    expiry = svc.get_cart_expiry(user_id)
    return {
        "cart_id": expiry.cart_id,
        "session_id": expiry.session_id,
        "last_activity": expiry.last_activity,
        "expires_at": expiry.expires_at,
        "remaining_seconds": int(expiry.remaining.total_seconds()),
        "approaching_expiry": expiry.approaching_expiry,
    }
