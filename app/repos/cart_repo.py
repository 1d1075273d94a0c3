# app/repos/cart_repo.py
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from app.data.models.cart import CartModel
from app.data.models.cart_item import CartItemModel
from app.domain.cart import Cart, CartItem, CartStatus
from app.domain.exceptions import CartNotFoundError, StorageError, VersionConflictError
from app.repos.base import CartRepository
from app.utils.logging import get_logger

logger = get_logger(__name__)


def _aware(value: datetime | None) -> datetime | None:
    # sqlite gubi strefe, trzymamy wszystko w UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlCartRepo(CartRepository):
    """
    Repozytorium koszyka na SQLAlchemy.

    Optimistic locking warunek na wersje:
    UPDATE carts SET version = 2, ... WHERE id = 1 AND version = 1
    rowcount 0 -> ktos inny zapisal pierwszy (albo koszyk zniknal).
    Pozycje sa podmieniane w tej samej transakcji co UPDATE.
    """

    def __init__(self, db: Session):
        self.db = db

    # =====================================================
    # QUERY
    # =====================================================
    def _select_carts(self):
        return (
            select(CartModel)
            .options(selectinload(CartModel.items))
            .execution_options(populate_existing=True)
        )

    def find_active_carts(self, user_id: str) -> List[Cart]:
        return self.find_by_user_and_status(user_id, CartStatus.ACTIVE)

    def find_by_user_and_status(self, user_id: str, status: CartStatus) -> List[Cart]:
        stmt = (
            self._select_carts()
            .where(CartModel.user_id == user_id, CartModel.status == status.value)
            .order_by(CartModel.last_activity.desc(), CartModel.id.asc())
        )
        rows = self._read(lambda: self.db.execute(stmt).scalars().all())
        return [self._to_domain(r) for r in rows]

    def find_by_id(self, cart_id: int) -> Optional[Cart]:
        stmt = self._select_carts().where(CartModel.id == cart_id)
        row = self._read(lambda: self.db.execute(stmt).scalar_one_or_none())
        return self._to_domain(row) if row else None

    def find_stale_active(self, older_than: datetime, limit: int) -> List[Cart]:
        stmt = (
            self._select_carts()
            .where(
                CartModel.status == CartStatus.ACTIVE.value,
                CartModel.last_activity < older_than,
            )
            .order_by(CartModel.last_activity.asc(), CartModel.id.asc())
            .limit(limit)
        )
        rows = self._read(lambda: self.db.execute(stmt).scalars().all())
        return [self._to_domain(r) for r in rows]

    def count_by_status(self) -> Dict[CartStatus, int]:
        stmt = select(CartModel.status, func.count(CartModel.id)).group_by(CartModel.status)
        rows = self._read(lambda: self.db.execute(stmt).all())
        counts = {s: 0 for s in CartStatus}
        for status, count in rows:
            counts[CartStatus(status)] = count
        return counts

    def count_active_since(self, since: datetime) -> int:
        stmt = select(func.count(CartModel.id)).where(
            CartModel.status == CartStatus.ACTIVE.value,
            CartModel.last_activity >= since,
        )
        return self._read(lambda: self.db.execute(stmt).scalar_one())

    # =====================================================
    # COMMANDS
    # =====================================================
    def save(self, cart: Cart) -> Cart:
        if cart.id is None:
            return self._insert(cart)

        try:
            self._compare_and_swap(
                cart,
                {
                    "status": cart.status.value,
                    "total": cart.total,
                    "last_activity": cart.last_activity,
                },
            )

            # podmiana pozycji w tej samej transakcji
            # synchronize_session (domyslnie) wyrzuca stare pozycje z sesji
            self.db.execute(delete(CartItemModel).where(CartItemModel.cart_id == cart.id))
            self.db.add_all(self._item_rows(cart, cart.id))
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to save cart {cart.id}: {e}")
            raise StorageError("Failed to save cart") from e

        logger.info(f"Cart {cart.id} saved, new version: {cart.loaded_version + 1}")
        return self._reload(cart.id)

    def mark_status(self, cart: Cart, status: CartStatus) -> Cart:
        if cart.id is None:
            raise CartNotFoundError("Cannot change status of an unsaved cart")

        try:
            self._compare_and_swap(cart, {"status": status.value})
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to mark cart {cart.id} as {status.value}: {e}")
            raise StorageError("Failed to update cart status") from e

        logger.info(f"Cart {cart.id} marked {status.value}")
        return self._reload(cart.id)

    # -----------------------------------------------------
    def _insert(self, cart: Cart) -> Cart:
        row = CartModel(
            user_id=cart.user_id,
            status=cart.status.value,
            total=cart.total,
            version=cart.version,
            session_id=cart.session_id,
            last_activity=cart.last_activity,
            created_at=cart.created_at,
        )
        try:
            self.db.add(row)
            self.db.flush()
            self.db.add_all(self._item_rows(cart, row.id))
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to create cart for user {cart.user_id}: {e}")
            raise StorageError("Failed to create cart") from e

        logger.info(f"Created cart {row.id} for user {cart.user_id}")
        return self._reload(row.id)

    def _compare_and_swap(self, cart: Cart, values: dict):
        expected = cart.loaded_version
        if expected is None:
            raise VersionConflictError(cart.id, expected, "Cart was not loaded from storage")

        result = self.db.execute(
            update(CartModel)
            .where(CartModel.id == cart.id, CartModel.version == expected)
            .values(version=expected + 1, **values)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            self.db.rollback()
            exists = self.db.execute(
                select(CartModel.id).where(CartModel.id == cart.id)
            ).scalar_one_or_none()
            if exists is None:
                raise CartNotFoundError(f"Cart not found with ID: {cart.id}")
            logger.warning(f"Version conflict on cart {cart.id} (expected version {expected})")
            raise VersionConflictError(cart.id, expected)

    def _reload(self, cart_id: int) -> Cart:
        cart = self.find_by_id(cart_id)
        if cart is None:
            raise CartNotFoundError(f"Cart not found with ID: {cart_id}")
        return cart

    def _read(self, query):
        try:
            return query()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Cart query failed: {e}")
            raise StorageError("Failed to read carts") from e

    @staticmethod
    def _item_rows(cart: Cart, cart_id: int) -> List[CartItemModel]:
        return [
            CartItemModel(
                cart_id=cart_id,
                article_id=i.article_id,
                article_name=i.article_name,
                quantity=i.quantity,
                price=i.price,
                subtotal=i.subtotal,
            )
            for i in cart.items
        ]

    @staticmethod
    def _to_domain(row: CartModel) -> Cart:
        cart = Cart(
            id=row.id,
            user_id=row.user_id,
            items=[
                CartItem(
                    id=i.id,
                    article_id=i.article_id,
                    article_name=i.article_name,
                    quantity=i.quantity,
                    price=i.price,
                )
                for i in row.items
            ],
            status=CartStatus(row.status),
            last_activity=_aware(row.last_activity),
            created_at=_aware(row.created_at),
            session_id=row.session_id,
            version=row.version,
        )
        cart.loaded_version = row.version
        return cart
