# app/repos/memory_cart_repo.py
import copy
import itertools
import threading
from datetime import datetime
from typing import Dict, List, Optional

from app.domain.cart import Cart, CartStatus
from app.domain.exceptions import CartNotFoundError, VersionConflictError
from app.repos.base import CartRepository
from app.utils.logging import get_logger

logger = get_logger(__name__)


class InMemoryCartRepo(CartRepository):
    """
    Repo w pamieci (testy, lokalne uruchomienie bez bazy).
    Jeden lock trzyma atomowosc porownaj wersje -> zapisz -> podbij wersje.
    Na zewnatrz wychodza tylko kopie, tak jak wiersze z bazy.
    """

    def __init__(self):
        self._carts: Dict[int, Cart] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    @staticmethod
    def _snapshot(cart: Cart) -> Cart:
        out = copy.deepcopy(cart)
        out.loaded_version = out.version
        return out

    # query
    def find_active_carts(self, user_id: str) -> List[Cart]:
        return self.find_by_user_and_status(user_id, CartStatus.ACTIVE)

    def find_by_user_and_status(self, user_id: str, status: CartStatus) -> List[Cart]:
        with self._lock:
            found = [
                self._snapshot(c)
                for c in self._carts.values()
                if c.user_id == user_id and c.status == status
            ]
        found.sort(key=lambda c: c.id)
        found.sort(key=lambda c: c.last_activity, reverse=True)
        return found

    def find_by_id(self, cart_id: int) -> Optional[Cart]:
        with self._lock:
            cart = self._carts.get(cart_id)
            return self._snapshot(cart) if cart else None

    def find_stale_active(self, older_than: datetime, limit: int) -> List[Cart]:
        with self._lock:
            found = [
                self._snapshot(c)
                for c in self._carts.values()
                if c.status == CartStatus.ACTIVE and c.last_activity < older_than
            ]
        found.sort(key=lambda c: (c.last_activity, c.id))
        return found[:limit]

    def count_by_status(self) -> Dict[CartStatus, int]:
        counts = {s: 0 for s in CartStatus}
        with self._lock:
            for c in self._carts.values():
                counts[c.status] += 1
        return counts

    def count_active_since(self, since: datetime) -> int:
        with self._lock:
            return sum(
                1
                for c in self._carts.values()
                if c.status == CartStatus.ACTIVE and c.last_activity >= since
            )

    # commands
    def save(self, cart: Cart) -> Cart:
        with self._lock:
            if cart.id is None:
                stored = copy.deepcopy(cart)
                stored.id = next(self._ids)
                self._carts[stored.id] = stored
                logger.info(f"Created cart {stored.id} for user {cart.user_id}")
                return self._snapshot(stored)

            current = self._check_version(cart)
            stored = copy.deepcopy(cart)
            stored.version = current.version + 1
            self._carts[cart.id] = stored
            return self._snapshot(stored)

    def mark_status(self, cart: Cart, status: CartStatus) -> Cart:
        with self._lock:
            current = self._check_version(cart)
            current.status = status
            current.version += 1
            return self._snapshot(current)

    def _check_version(self, cart: Cart) -> Cart:
        current = self._carts.get(cart.id)
        if current is None:
            raise CartNotFoundError(f"Cart not found with ID: {cart.id}")
        if cart.loaded_version is None or current.version != cart.loaded_version:
            logger.warning(
                f"Version conflict on cart {cart.id} "
                f"(expected {cart.loaded_version}, stored {current.version})"
            )
            raise VersionConflictError(cart.id, cart.loaded_version)
        return current

    # pomocnicze dla testow
    def put(self, cart: Cart) -> Cart:
        """Wstawia koszyk jak jest (z id / wersja), bez sprawdzania reguly jednego ACTIVE."""
        with self._lock:
            stored = copy.deepcopy(cart)
            if stored.id is None:
                stored.id = next(self._ids)
            self._carts[stored.id] = stored
            return self._snapshot(stored)
