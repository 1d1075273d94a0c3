# app/api/dependencies.py
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app.data.database import get_db
from app.repos.cart_repo import SqlCartRepo
from app.services.auth_service import TokenAuthenticator
from app.services.cart_service import CartService

bearer_scheme = HTTPBearer(auto_error=False)


def get_authenticator() -> TokenAuthenticator:
    return TokenAuthenticator()


def get_current_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    authenticator: TokenAuthenticator = Depends(get_authenticator),
) -> str:
    token = credentials.credentials if credentials else None
    return authenticator.resolve_user_id(token)


def get_cart_service(db: Session = Depends(get_db)) -> CartService:
    return CartService(SqlCartRepo(db))
