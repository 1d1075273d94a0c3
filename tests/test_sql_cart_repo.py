"""
Tests for the SQLAlchemy cart repository.

Run against in-memory SQLite; the compare-and-swap is a plain
UPDATE ... WHERE version = :expected so the behaviour matches Postgres.
"""
from datetime import timedelta

import pytest
from sqlalchemy import delete

from app.data.models import CartModel
from app.domain.cart import Cart, CartItem, CartStatus
from app.domain.exceptions import CartNotFoundError, VersionConflictError
from app.services.cart_service import CartService

from tests.conftest import START, TEST_USER_ID, FakeClock, SleepRecorder


def item(article_id=7, quantity=2, price=3.50):
    return CartItem(article_id=article_id, article_name=f"Article {article_id}", quantity=quantity, price=price)


def new_cart(user_id=TEST_USER_ID, at=START, items=()):
    cart = Cart.new(user_id, at)
    for i in items:
        cart.add_item(i, now=at)
    return cart


class TestInsertAndFind:
    def test_insert_assigns_id_and_keeps_items(self, sql_repo):
        saved = sql_repo.save(new_cart(items=[item(1, 2, 3.5), item(2, 1, 10.0)]))

        assert saved.id is not None
        assert saved.version == 2
        assert saved.loaded_version == 2
        assert [(i.article_id, i.quantity) for i in saved.items] == [(1, 2), (2, 1)]
        assert saved.total == pytest.approx(17.0)

    def test_timestamps_come_back_timezone_aware(self, sql_repo):
        saved = sql_repo.save(new_cart())
        found = sql_repo.find_by_id(saved.id)

        assert found.last_activity == START
        assert found.created_at == START
        assert found.session_id == saved.session_id

    def test_find_by_id_missing(self, sql_repo):
        assert sql_repo.find_by_id(12345) is None

    def test_find_active_orders_by_latest_activity(self, sql_repo):
        older = sql_repo.save(new_cart(at=START - timedelta(hours=2)))
        newer = sql_repo.save(new_cart(at=START - timedelta(hours=1)))
        sql_repo.save(new_cart(user_id="someone-else"))

        found = sql_repo.find_active_carts(TEST_USER_ID)

        assert [c.id for c in found] == [newer.id, older.id]

    def test_find_by_user_and_status(self, sql_repo):
        cart = sql_repo.save(new_cart(items=[item()]))
        sql_repo.mark_status(cart, CartStatus.COMPLETED)

        assert sql_repo.find_active_carts(TEST_USER_ID) == []
        completed = sql_repo.find_by_user_and_status(TEST_USER_ID, CartStatus.COMPLETED)
        assert [c.id for c in completed] == [cart.id]


class TestCompareAndSwap:
    def test_save_increments_stored_version(self, sql_repo):
        cart = sql_repo.save(new_cart(items=[item(1)]))
        cart.update_item_quantity(1, 5, now=START)

        saved = sql_repo.save(cart)

        assert saved.version == cart.loaded_version + 1
        assert saved.items[0].quantity == 5
        assert saved.total == pytest.approx(17.5)

    def test_items_are_replaced(self, sql_repo):
        cart = sql_repo.save(new_cart(items=[item(1), item(2)]))
        cart.remove_item(1, now=START)
        cart.add_item(item(3), now=START)

        saved = sql_repo.save(cart)

        assert sorted(i.article_id for i in saved.items) == [2, 3]

    def test_stale_version_is_rejected(self, sql_repo):
        """Two tabs load version N; the second write must fail."""
        cart = sql_repo.save(new_cart(items=[item(1)]))
        tab_a = sql_repo.find_by_id(cart.id)
        tab_b = sql_repo.find_by_id(cart.id)

        tab_a.add_item(item(2), now=START)
        sql_repo.save(tab_a)

        tab_b.add_item(item(3), now=START)
        with pytest.raises(VersionConflictError):
            sql_repo.save(tab_b)

        stored = sql_repo.find_by_id(cart.id)
        assert sorted(i.article_id for i in stored.items) == [1, 2]
        assert stored.version == cart.version + 1

    def test_mark_status_checks_version(self, sql_repo):
        cart = sql_repo.save(new_cart(items=[item(1)]))
        stale = sql_repo.find_by_id(cart.id)

        cart.add_item(item(2), now=START)
        sql_repo.save(cart)

        with pytest.raises(VersionConflictError):
            sql_repo.mark_status(stale, CartStatus.ABANDONED)
        assert sql_repo.find_by_id(cart.id).status == CartStatus.ACTIVE

    def test_mark_status(self, sql_repo):
        cart = sql_repo.save(new_cart())

        marked = sql_repo.mark_status(cart, CartStatus.ABANDONED)

        assert marked.status == CartStatus.ABANDONED
        assert marked.version == cart.version + 1

    def test_deleted_cart_is_not_found(self, sql_repo, sql_session):
        cart = sql_repo.save(new_cart(items=[item(1)]))
        sql_session.execute(delete(CartModel).where(CartModel.id == cart.id))
        sql_session.commit()

        cart.add_item(item(2), now=START)
        with pytest.raises(CartNotFoundError):
            sql_repo.save(cart)


class TestMaintenanceQueries:
    def test_find_stale_active(self, sql_repo):
        stale = sql_repo.save(new_cart(user_id="a", at=START - timedelta(hours=30)))
        sql_repo.save(new_cart(user_id="b", at=START - timedelta(hours=2)))
        done = sql_repo.save(new_cart(user_id="c", at=START - timedelta(hours=40), items=[item()]))
        sql_repo.mark_status(done, CartStatus.COMPLETED)

        found = sql_repo.find_stale_active(START - timedelta(hours=24), limit=10)

        assert [c.id for c in found] == [stale.id]

    def test_find_stale_active_limit(self, sql_repo):
        for i in range(4):
            sql_repo.save(new_cart(user_id=f"user-{i}", at=START - timedelta(hours=30 + i)))

        assert len(sql_repo.find_stale_active(START, limit=3)) == 3

    def test_counts(self, sql_repo):
        sql_repo.save(new_cart(user_id="a"))
        sql_repo.save(new_cart(user_id="b", at=START - timedelta(hours=48)))
        abandoned = sql_repo.save(new_cart(user_id="c"))
        sql_repo.mark_status(abandoned, CartStatus.ABANDONED)

        counts = sql_repo.count_by_status()

        assert counts == {
            CartStatus.ACTIVE: 2,
            CartStatus.ABANDONED: 1,
            CartStatus.COMPLETED: 0,
        }
        assert sql_repo.count_active_since(START - timedelta(hours=24)) == 1


class TestServiceOnSql:
    @pytest.fixture
    def sql_clock(self):
        return FakeClock()

    @pytest.fixture
    def sql_service(self, sql_repo, policy, sql_clock):
        return CartService(sql_repo, policy=policy, clock=sql_clock, sleep=SleepRecorder())

    def test_cart_lifecycle(self, sql_service):
        sql_service.add_item(TEST_USER_ID, 1, "Burger", 2, 3.50)
        sql_service.add_item(TEST_USER_ID, 2, "Fries", 1, 2.00)
        sql_service.update_item_quantity(TEST_USER_ID, 2, 3)
        cart = sql_service.remove_item(TEST_USER_ID, 1)

        assert [(i.article_id, i.quantity) for i in cart.items] == [(2, 3)]
        assert cart.total == pytest.approx(6.0)

        completed = sql_service.complete_cart(TEST_USER_ID)
        assert completed.status == CartStatus.COMPLETED

    def test_expired_cart_is_replaced(self, sql_service, sql_repo, sql_clock):
        old = sql_service.add_item(TEST_USER_ID, 1, "Burger", 1, 3.50)
        sql_clock.advance(hours=25)

        new = sql_service.add_item(TEST_USER_ID, 2, "Fries", 1, 2.00)

        assert new.id != old.id
        assert sql_repo.find_by_id(old.id).status == CartStatus.ABANDONED

    def test_cleanup_sweep(self, sql_service, sql_repo, sql_clock):
        sql_service.add_item("user-a", 1, "Burger", 1, 3.50)
        sql_service.add_item("user-b", 1, "Burger", 1, 3.50)
        sql_clock.advance(hours=25)

        result = sql_service.cleanup_expired_carts()

        assert result.abandoned == 2
        assert sql_repo.count_by_status()[CartStatus.ABANDONED] == 2
