# app/domain/exceptions.py
"""
Typowane bledy domeny koszyka.

CartError
├── InvalidParameterError      - zle dane wejsciowe (400)
├── InvalidOperationError      - operacja niedozwolona w obecnym stanie (422)
│   └── LimitExceededError     - przekroczony limit pozycji
├── CartNotFoundError          - brak (aktywnego) koszyka (404)
├── CartItemNotFoundError      - brak artykulu w koszyku (404)
├── DuplicateArticleError      - artykul juz jest w koszyku (409)
├── VersionConflictError       - odrzucony compare-and-swap w repo (wewnetrzny)
├── ConcurrencyConflictError   - wyczerpane ponowienia (409)
├── StorageError               - awaria bazy (503)
├── InvalidCredentialError     - zly / wygasly token (401)
└── ForbiddenRoleError         - rola bez dostepu (403)

Adaptery (HTTP, taski) mapuja typ, nigdy tresc komunikatu.
"""


class CartError(Exception):
    default_message = "Cart error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidParameterError(CartError):
    default_message = "Invalid parameter"


class InvalidOperationError(CartError):
    default_message = "Cart is not active"


class LimitExceededError(InvalidOperationError):
    default_message = "Cart item limit exceeded"


class CartNotFoundError(CartError):
    default_message = "Cart not found"


class CartItemNotFoundError(CartError):
    default_message = "Item not found in cart"


class DuplicateArticleError(CartError):
    default_message = "Item already exists in cart"


class VersionConflictError(CartError):
    default_message = "Cart was modified concurrently"

    def __init__(self, cart_id=None, expected_version=None, message: str | None = None):
        self.cart_id = cart_id
        self.expected_version = expected_version
        if message is None and cart_id is not None:
            message = f"Cart {cart_id} no longer at version {expected_version}"
        super().__init__(message)


class ConcurrencyConflictError(CartError):
    default_message = "Cart was modified concurrently, please retry"


class StorageError(CartError):
    default_message = "Cart storage failure"


class InvalidCredentialError(CartError):
    default_message = "Invalid or expired token"


class ForbiddenRoleError(CartError):
    default_message = "Insufficient permissions"
