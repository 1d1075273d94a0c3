# app/repos/base.py
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from app.domain.cart import Cart, CartStatus


class CartRepository(ABC):
    """
    Port persystencji koszyka.

    Kontrakt optimistic locking:
    - save() koszyka bez id -> INSERT, repo nadaje id
    - save() koszyka z id -> zapis tylko jesli wersja w bazie == cart.loaded_version,
      repo nadaje nowa wersje (loaded_version + 1), inaczej VersionConflictError
    - porownanie wersji, zapis i podbicie wersji musza byc atomowe
    """

    @abstractmethod
    def find_active_carts(self, user_id: str) -> List[Cart]:
        """Wszystkie koszyki ACTIVE usera (normalnie 0 albo 1)."""

    @abstractmethod
    def find_by_user_and_status(self, user_id: str, status: CartStatus) -> List[Cart]:
        """Koszyki usera w danym statusie, najnowsza aktywnosc pierwsza."""

    @abstractmethod
    def find_by_id(self, cart_id: int) -> Optional[Cart]:
        pass

    @abstractmethod
    def save(self, cart: Cart) -> Cart:
        pass

    @abstractmethod
    def mark_status(self, cart: Cart, status: CartStatus) -> Cart:
        """Zmiana samego statusu z tym samym compare-and-swap co save()."""

    @abstractmethod
    def find_stale_active(self, older_than: datetime, limit: int) -> List[Cart]:
        """Koszyki ACTIVE z last_activity < older_than, najstarsze pierwsze."""

    @abstractmethod
    def count_by_status(self) -> Dict[CartStatus, int]:
        pass

    @abstractmethod
    def count_active_since(self, since: datetime) -> int:
        pass
