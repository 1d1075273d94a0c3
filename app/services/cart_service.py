from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional
import time

from tenacity import RetryError

from app.domain.cart import (
    Cart,
    CartItem,
    CartPolicy,
    CartStatus,
    DEFAULT_POLICY,
    utcnow,
    validate_user_id,
)
from app.domain.exceptions import (
    CartError,
    CartNotFoundError,
    ConcurrencyConflictError,
    InvalidOperationError,
    VersionConflictError,
)
from app.repos.base import CartRepository
from app.utils.retry import version_conflict_retry
from app.utils.settings import (
    CART_CLEANUP_BATCH_SIZE,
    CART_MAX_RETRY_ATTEMPTS,
    CART_RETRY_BASE_DELAY_MS,
)
from app.utils.logging import get_logger

logger = get_logger(__name__)

Mutation = Callable[[Cart, datetime], None]


@dataclass
class CartExpiry:
    cart_id: int
    session_id: str
    last_activity: datetime
    expires_at: datetime
    remaining: timedelta
    approaching_expiry: bool


@dataclass
class SweepResult:
    examined: int = 0
    abandoned: int = 0
    conflicts: int = 0
    failures: int = 0
    abandoned_ids: List[int] = field(default_factory=list)


class CartService:
    """
    Koordynator komend na koszyku usera (optimistic locking).

    Kazda komenda to jeden cykl:
    1. pobierz ACTIVE koszyk usera (naprawa duplikatow, porzucenie przeterminowanego)
    2. wykonaj operacje agregatu w pamieci
    3. zapisz compare-and-swap na wersji
    4. przy konflikcie wersji od nowa od 1, max N prob, potem ConcurrencyConflictError

    Bledy walidacji i reguly biznesowe nie sa ponawiane.
    """

    def __init__(
        self,
        repo: CartRepository,
        policy: CartPolicy = DEFAULT_POLICY,
        max_attempts: int = CART_MAX_RETRY_ATTEMPTS,
        retry_base_delay_ms: int = CART_RETRY_BASE_DELAY_MS,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.repo = repo
        self.policy = policy
        self.max_attempts = max_attempts
        self.retry_base_delay_ms = retry_base_delay_ms
        self.clock = clock
        self.sleep = sleep

    # =====================================================
    # QUERY
    # =====================================================
    def get_active_cart(self, user_id: str) -> Cart:
        logger.debug(f"Retrieving active cart for user: {user_id}")
        # odczyt tez moze pisac (porzucenie przeterminowanego / duplikatow)
        return self._with_retry(user_id, "get active cart", self._read_active)

    def get_or_create_active_cart(self, user_id: str) -> Cart:
        def attempt(uid: str) -> Cart:
            now = self.clock()
            cart = self._load_active(uid, now, create_if_missing=True)
            if cart is not None:
                return cart
            logger.info(f"No active cart found for user: {uid}, creating new cart")
            return self.repo.save(Cart.new(uid, now))

        return self._with_retry(user_id, "get or create cart", attempt)

    def get_cart_by_status(self, user_id: str, status) -> Cart:
        status = CartStatus.parse(status)
        if status == CartStatus.ACTIVE:
            return self.get_active_cart(user_id)

        validate_user_id(user_id)
        logger.debug(f"Retrieving cart for user: {user_id} with status: {status.value}")
        carts = self.repo.find_by_user_and_status(user_id, status)
        if not carts:
            raise CartNotFoundError(f"No cart found for user with status: {status.value}")
        return carts[0]

    def get_cart_expiry(self, user_id: str) -> CartExpiry:
        cart = self.get_active_cart(user_id)
        now = self.clock()
        ttl = self.policy.ttl
        return CartExpiry(
            cart_id=cart.id,
            session_id=cart.session_id,
            last_activity=cart.last_activity,
            expires_at=cart.expires_at(ttl),
            remaining=cart.time_until_expiry(now, ttl),
            approaching_expiry=cart.is_approaching_expiry(now, ttl, self.policy.warning),
        )

    # =====================================================
    # COMMANDS
    # =====================================================
    def create_cart(self, user_id: str) -> Cart:
        logger.info(f"Creating new cart for user: {user_id}")

        def attempt(uid: str) -> Cart:
            now = self.clock()
            existing = self._load_active(uid, now, create_if_missing=True)
            if existing is not None:
                logger.warning(f"User {uid} already has an active cart {existing.id}")
                raise InvalidOperationError("User already has an active cart")
            return self.repo.save(Cart.new(uid, now))

        return self._with_retry(user_id, "create cart", attempt)

    def add_item(
        self,
        user_id: str,
        article_id: int,
        article_name: str,
        quantity: int,
        price: float,
    ) -> Cart:
        logger.info(f"Adding article {article_id} x{quantity} to cart for user: {user_id}")

        def mutation(cart: Cart, now: datetime):
            item = CartItem(
                article_id=article_id,
                article_name=article_name,
                quantity=quantity,
                price=price,
            )
            cart.add_item(item, now=now, policy=self.policy)

        return self._mutate(user_id, "add item", mutation, create_if_missing=True)

    def update_item_quantity(self, user_id: str, article_id: int, quantity: int) -> Cart:
        logger.info(
            f"Updating item quantity for user: {user_id} and article: {article_id} to {quantity}"
        )
        return self._mutate(
            user_id,
            "update item quantity",
            lambda cart, now: cart.update_item_quantity(article_id, quantity, now=now, policy=self.policy),
        )

    def remove_item(self, user_id: str, article_id: int) -> Cart:
        logger.info(f"Removing item from cart for user: {user_id} and article: {article_id}")
        return self._mutate(
            user_id,
            "remove item",
            lambda cart, now: cart.remove_item(article_id, now=now, policy=self.policy),
        )

    def clear_cart(self, user_id: str) -> Cart:
        logger.info(f"Clearing cart for user: {user_id}")
        return self._mutate(
            user_id,
            "clear cart",
            lambda cart, now: cart.clear(now=now, policy=self.policy),
        )

    def abandon_cart(self, user_id: str) -> Cart:
        logger.info(f"Abandoning cart for user: {user_id}")
        return self._mutate(user_id, "abandon cart", lambda cart, now: cart.abandon(now=now))

    def complete_cart(self, user_id: str) -> Cart:
        logger.info(f"Completing cart for user: {user_id}")
        return self._mutate(
            user_id,
            "complete cart",
            lambda cart, now: cart.complete(now=now, policy=self.policy),
        )

    # =====================================================
    # CLEANUP
    # =====================================================
    def cleanup_expired_carts(
        self,
        now: Optional[datetime] = None,
        batch_size: int = CART_CLEANUP_BATCH_SIZE,
    ) -> SweepResult:
        """
        Porzuca ACTIVE koszyki bez aktywnosci dluzej niz TTL.

        Best-effort: konflikt albo blad na jednym koszyku jest logowany
        i pomijany, reszta paczki idzie dalej. Koszyk z konfliktem wersji
        najpewniej wlasnie zostal uzyty, wiec go nie ruszamy.
        """
        now = now or self.clock()
        cutoff = now - self.policy.ttl
        result = SweepResult()

        candidates = self.repo.find_stale_active(cutoff, batch_size)
        logger.info(f"Found {len(candidates)} expired carts to abandon")

        for cart in candidates:
            result.examined += 1
            try:
                self.repo.mark_status(cart, CartStatus.ABANDONED)
            except VersionConflictError:
                result.conflicts += 1
                logger.info(f"Cart {cart.id} changed during cleanup, skipping")
                continue
            except CartError as e:
                result.failures += 1
                logger.warning(f"Failed to abandon expired cart {cart.id}: {e}")
                continue

            result.abandoned += 1
            result.abandoned_ids.append(cart.id)

        return result

    # =====================================================
    # protokol
    # =====================================================
    def _mutate(self, user_id: str, action: str, mutation: Mutation, create_if_missing: bool = False) -> Cart:
        def attempt(uid: str) -> Cart:
            now = self.clock()
            cart = self._load_active(uid, now, create_if_missing=create_if_missing)
            if cart is None:
                cart = Cart.new(uid, now)

            mutation(cart, now)
            cart.validate(self.policy)

            saved = self.repo.save(cart)
            logger.info(f"{action} done on cart {saved.id}, version: {saved.version}")
            return saved

        return self._with_retry(user_id, action, attempt)

    def _with_retry(self, user_id: str, action: str, attempt: Callable[[str], Cart]) -> Cart:
        validate_user_id(user_id)
        user_id = user_id.strip()

        retrying = version_conflict_retry(
            self.max_attempts,
            self.retry_base_delay_ms,
            sleep=self.sleep,
        )
        try:
            for try_ in retrying:
                with try_:
                    return attempt(user_id)
        except RetryError as e:
            logger.error(
                f"Concurrency conflict for user {user_id} on '{action}' "
                f"after {self.max_attempts} attempts"
            )
            raise ConcurrencyConflictError(
                f"Cart was modified concurrently ({action}), please retry"
            ) from e.last_attempt.exception()

    def _read_active(self, user_id: str) -> Cart:
        cart = self._load_active(user_id, self.clock())
        if cart is None:
            raise CartNotFoundError("No active cart found for user")
        return cart

    def _load_active(self, user_id: str, now: datetime, create_if_missing: bool = False) -> Optional[Cart]:
        """
        Zwraca aktualny ACTIVE koszyk albo None (tylko gdy create_if_missing).

        - brak koszyka -> CartNotFoundError (albo None)
        - kilka ACTIVE -> zostaje najswiezszy, reszta ABANDONED
        - przeterminowany -> ABANDONED i CartNotFoundError (albo None)
        """
        carts = self.repo.find_active_carts(user_id)

        if not carts:
            if create_if_missing:
                return None
            raise CartNotFoundError("No active cart found for user")

        cart = self._reconcile(user_id, carts)

        if cart.is_stale(now, self.policy.ttl):
            logger.warning(
                f"Cart {cart.id} of user {user_id} expired "
                f"(last activity {cart.last_activity.isoformat()}), abandoning"
            )
            self.repo.mark_status(cart, CartStatus.ABANDONED)
            if create_if_missing:
                return None
            raise CartNotFoundError("Cart session expired")

        return cart

    def _reconcile(self, user_id: str, carts: List[Cart]) -> Cart:
        if len(carts) == 1:
            return carts[0]

        # najswiezsza aktywnosc wygrywa, remis -> najnizsze id
        ordered = sorted(carts, key=lambda c: (-c.last_activity.timestamp(), c.id))
        keep, extras = ordered[0], ordered[1:]

        logger.warning(
            f"User {user_id} has {len(carts)} active carts, keeping {keep.id}, "
            f"abandoning {[c.id for c in extras]}"
        )
        for extra in extras:
            self.repo.mark_status(extra, CartStatus.ABANDONED)

        return keep
