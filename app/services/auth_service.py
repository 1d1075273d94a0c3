# app/services/auth_service.py
from dataclasses import dataclass
from typing import Iterable

import jwt

from app.domain.exceptions import ForbiddenRoleError, InvalidCredentialError
from app.utils.settings import JWT_ALGORITHM, JWT_ALLOWED_ROLES, JWT_SECRET
from app.utils.logging import get_logger

logger = get_logger(__name__)

BEARER_SCHEME = "bearer"


@dataclass(frozen=True)
class Principal:
    user_id: str
    role: str | None


class TokenAuthenticator:
    """
    Port uwierzytelnienia: token -> user id.
    Token wystawia serwis uzytkownikow; tu tylko weryfikacja podpisu i claimow.
    user id = claim "sub", rola = claim "role".
    """

    def __init__(
        self,
        secret: str | None = None,
        algorithm: str | None = None,
        allowed_roles: Iterable[str] | None = None,
    ):
        self.secret = secret or JWT_SECRET
        self.algorithm = algorithm or JWT_ALGORITHM
        self.allowed_roles = tuple(allowed_roles if allowed_roles is not None else JWT_ALLOWED_ROLES)

    def resolve_principal(self, credential: str | None) -> Principal:
        token = self._strip_bearer(credential)

        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"require": ["sub", "exp"]},
            )
        except jwt.ExpiredSignatureError:
            logger.warning("JWT token has expired")
            raise InvalidCredentialError("Token has expired") from None
        except jwt.InvalidTokenError as e:
            logger.warning(f"JWT token validation failed: {e}")
            raise InvalidCredentialError("Invalid token") from None

        user_id = str(claims.get("sub") or "").strip()
        if not user_id:
            raise InvalidCredentialError("Token has no subject")

        role = claims.get("role")
        if self.allowed_roles and role not in self.allowed_roles:
            logger.warning(f"User {user_id} with role {role} denied cart access")
            raise ForbiddenRoleError()

        return Principal(user_id=user_id, role=role)

    def resolve_user_id(self, credential: str | None) -> str:
        return self.resolve_principal(credential).user_id

    @staticmethod
    def _strip_bearer(credential: str | None) -> str:
        if not credential or not credential.strip():
            raise InvalidCredentialError("Missing token")
        parts = credential.split(None, 1)
        if parts[0].lower() == BEARER_SCHEME:
            credential = parts[1].strip() if len(parts) > 1 else ""
        else:
            credential = credential.strip()
        if not credential:
            raise InvalidCredentialError("Missing token")
        return credential
