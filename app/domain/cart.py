# app/domain/cart.py
"""
Agregat koszyka: koszyk + pozycje.

Wszystkie reguly biznesowe (limity, duplikaty, total, przejscia statusow,
wygasanie sesji) sa tutaj, bez wiedzy o bazie. Koordynator (CartService)
laduje koszyk z repo, wola jedna operacje i zapisuje go compare-and-swap.
"""
import math
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional

from app.domain.exceptions import (
    CartItemNotFoundError,
    DuplicateArticleError,
    InvalidOperationError,
    InvalidParameterError,
    LimitExceededError,
)
from app.utils.settings import (
    CART_MAX_ITEM_QUANTITY,
    CART_MAX_ITEMS,
    CART_TTL_HOURS,
    CART_WARNING_HOURS,
)

TOTAL_EPSILON = 1e-9
ARTICLE_NAME_MAX_LENGTH = 100


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CartStatus(str, Enum):
    ACTIVE = "ACTIVE"
    ABANDONED = "ABANDONED"
    COMPLETED = "COMPLETED"

    @classmethod
    def parse(cls, value) -> "CartStatus":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise InvalidParameterError(f"Unknown cart status: {value}") from None


@dataclass(frozen=True)
class CartPolicy:
    """Limity i okna czasowe sesji koszyka."""

    ttl: timedelta = timedelta(hours=CART_TTL_HOURS)
    warning: timedelta = timedelta(hours=CART_WARNING_HOURS)
    max_items: int = CART_MAX_ITEMS
    max_quantity: int = CART_MAX_ITEM_QUANTITY

    @property
    def warning_after(self) -> timedelta:
        # od tego momentu klient dostaje ostrzezenie, operacje dalej dzialaja
        return self.ttl - self.warning


DEFAULT_POLICY = CartPolicy()


def validate_quantity(quantity, max_quantity: int = CART_MAX_ITEM_QUANTITY) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidParameterError("Quantity must be an integer")
    if quantity <= 0:
        raise InvalidParameterError("Quantity must be greater than zero")
    if quantity > max_quantity:
        raise InvalidParameterError(f"Quantity cannot exceed {max_quantity}")
    return quantity


@dataclass
class CartItem:
    article_id: int
    article_name: str
    quantity: int
    price: float
    id: Optional[int] = None

    def __post_init__(self):
        self.validate()

    def validate(self, max_quantity: int = CART_MAX_ITEM_QUANTITY):
        if self.article_id is None:
            raise InvalidParameterError("Article ID is required")
        if isinstance(self.article_id, bool) or not isinstance(self.article_id, int):
            raise InvalidParameterError("Article ID must be an integer")
        if not self.article_name or not str(self.article_name).strip():
            raise InvalidParameterError("Article name cannot be empty")
        if len(self.article_name) > ARTICLE_NAME_MAX_LENGTH:
            raise InvalidParameterError(
                f"Article name cannot exceed {ARTICLE_NAME_MAX_LENGTH} characters"
            )
        validate_quantity(self.quantity, max_quantity)
        if isinstance(self.price, bool) or not isinstance(self.price, (int, float)):
            raise InvalidParameterError("Price must be a number")
        if math.isnan(self.price) or math.isinf(self.price):
            raise InvalidParameterError("Invalid price value")
        if self.price < 0:
            raise InvalidParameterError("Price must be greater than or equal to zero")

    @property
    def subtotal(self) -> float:
        return self.quantity * self.price


def new_session_id() -> str:
    return f"cart_{secrets.token_hex(8)}"


@dataclass
class Cart:
    user_id: str
    items: List[CartItem] = field(default_factory=list)
    status: CartStatus = CartStatus.ACTIVE
    last_activity: datetime = field(default_factory=utcnow)
    created_at: datetime = field(default_factory=utcnow)
    session_id: str = field(default_factory=new_session_id)
    version: int = 0
    id: Optional[int] = None
    # wersja odczytana z repo; None dla koszyka jeszcze nie zapisanego
    loaded_version: Optional[int] = field(default=None, compare=False, repr=False)

    @classmethod
    def new(cls, user_id: str, now: datetime | None = None) -> "Cart":
        validate_user_id(user_id)
        now = now or utcnow()
        return cls(user_id=user_id.strip(), last_activity=now, created_at=now)

    # ------------------------------------------------------------------
    # odczyt
    # ------------------------------------------------------------------
    @property
    def total(self) -> float:
        return sum((i.subtotal for i in self.items), 0.0)

    @property
    def is_active(self) -> bool:
        return self.status == CartStatus.ACTIVE

    def find_item(self, article_id: int) -> Optional[CartItem]:
        for item in self.items:
            if item.article_id == article_id:
                return item
        return None

    def is_stale(self, now: datetime, ttl: timedelta) -> bool:
        return now - self.last_activity > ttl

    def is_approaching_expiry(self, now: datetime, ttl: timedelta, warning: timedelta) -> bool:
        if self.is_stale(now, ttl):
            return False
        return now - self.last_activity >= ttl - warning

    def expires_at(self, ttl: timedelta) -> datetime:
        return self.last_activity + ttl

    def time_until_expiry(self, now: datetime, ttl: timedelta) -> timedelta:
        remaining = self.expires_at(ttl) - now
        return max(remaining, timedelta(0))

    # ------------------------------------------------------------------
    # komendy na pozycjach
    # ------------------------------------------------------------------
    def add_item(self, item: CartItem, now: datetime | None = None, policy: CartPolicy = DEFAULT_POLICY):
        now = now or utcnow()
        self._ensure_mutable(now, policy)

        if item is None:
            raise InvalidParameterError("Cart item cannot be null")
        if len(self.items) >= policy.max_items:
            raise LimitExceededError(f"Cart cannot hold more than {policy.max_items} items")
        item.validate(policy.max_quantity)
        if self.find_item(item.article_id) is not None:
            raise DuplicateArticleError("Article already exists in cart")

        self.items.append(item)
        self._touch(now)

    def update_item_quantity(
        self,
        article_id: int,
        quantity: int,
        now: datetime | None = None,
        policy: CartPolicy = DEFAULT_POLICY,
    ):
        now = now or utcnow()
        self._ensure_mutable(now, policy)
        validate_quantity(quantity, policy.max_quantity)

        item = self.find_item(article_id)
        if item is None:
            raise CartItemNotFoundError("Article not found in cart")

        item.quantity = quantity
        self._touch(now)

    def remove_item(self, article_id: int, now: datetime | None = None, policy: CartPolicy = DEFAULT_POLICY):
        now = now or utcnow()
        self._ensure_mutable(now, policy)

        item = self.find_item(article_id)
        if item is None:
            raise CartItemNotFoundError("Article not found in cart")

        self.items.remove(item)
        self._touch(now)

    def clear(self, now: datetime | None = None, policy: CartPolicy = DEFAULT_POLICY):
        now = now or utcnow()
        self._ensure_mutable(now, policy)
        self.items.clear()
        self._touch(now)

    # ------------------------------------------------------------------
    # przejscia statusu
    # ------------------------------------------------------------------
    def abandon(self, now: datetime | None = None):
        # przeterminowany koszyk tez mozna porzucic, to wlasnie robi cleanup
        self._ensure_status(CartStatus.ACTIVE, "abandon")
        self.status = CartStatus.ABANDONED
        self._touch(now or utcnow())

    def complete(self, now: datetime | None = None, policy: CartPolicy = DEFAULT_POLICY):
        now = now or utcnow()
        self._ensure_mutable(now, policy)
        if not self.items:
            raise InvalidOperationError("Cannot complete an empty cart")
        self.status = CartStatus.COMPLETED
        self._touch(now)

    # ------------------------------------------------------------------
    # samokontrola przed zapisem
    # ------------------------------------------------------------------
    def validate(self, policy: CartPolicy = DEFAULT_POLICY):
        try:
            validate_user_id(self.user_id)
        except InvalidParameterError as e:
            raise InvalidOperationError(f"Cart failed validation: {e.message}") from None

        if not isinstance(self.status, CartStatus):
            raise InvalidOperationError(f"Cart failed validation: unknown status {self.status}")

        seen = set()
        for item in self.items:
            try:
                item.validate(policy.max_quantity)
            except InvalidParameterError as e:
                raise InvalidOperationError(
                    f"Cart failed validation: article {item.article_id}: {e.message}"
                ) from None
            if item.article_id in seen:
                raise InvalidOperationError(
                    f"Cart failed validation: duplicate article {item.article_id}"
                )
            seen.add(item.article_id)

        if len(self.items) > policy.max_items:
            raise InvalidOperationError("Cart failed validation: too many items")

        expected = sum(i.price * i.quantity for i in self.items)
        if not math.isclose(self.total, expected, rel_tol=TOTAL_EPSILON, abs_tol=TOTAL_EPSILON):
            raise InvalidOperationError("Cart failed validation: total is inconsistent")

    # ------------------------------------------------------------------
    def _ensure_status(self, expected: CartStatus, action: str):
        if self.status != expected:
            raise InvalidOperationError(
                f"Cannot {action} cart in status {self.status.value}"
            )

    def _ensure_mutable(self, now: datetime, policy: CartPolicy):
        if not self.is_active:
            raise InvalidOperationError("Cart is not active")
        if self.is_stale(now, policy.ttl):
            raise InvalidOperationError("Cart session has expired")

    def _touch(self, now: datetime):
        self.last_activity = now
        self.version += 1


def validate_user_id(user_id) -> str:
    if user_id is None or not isinstance(user_id, str) or not user_id.strip():
        raise InvalidParameterError("User ID cannot be empty")
    return user_id
