"""
Tests for CartSessionService: scheduled cleanup, manual cleanup and health metrics.
"""
import logging

import pytest

from app.domain.cart import CartStatus
from app.domain.exceptions import StorageError
from app.repos.memory_cart_repo import InMemoryCartRepo
from app.services.cart_service import CartService
from app.services.session_service import CartSessionService, SystemMetrics

from tests.conftest import TEST_USER_ID


def add(service, user_id=TEST_USER_ID, article_id=1):
    return service.add_item(user_id, article_id, "Burger", 1, 3.50)


@pytest.fixture
def session_service(service, repo):
    return CartSessionService(service, repo, cleanup_enabled=True, metrics_enabled=True, batch_size=10)


class TestScheduledCleanup:
    def test_abandons_expired_carts(self, session_service, service, repo, clock):
        add(service, "user-a")
        add(service, "user-b")
        clock.advance(hours=25)

        assert session_service.cleanup_expired_carts() == 2
        assert repo.count_by_status()[CartStatus.ABANDONED] == 2
        assert session_service.total_processed == 2
        assert session_service.last_cleanup_time == clock()

    def test_disabled_cleanup_does_nothing(self, service, repo, clock):
        disabled = CartSessionService(service, repo, cleanup_enabled=False)
        add(service)
        clock.advance(hours=25)

        assert disabled.cleanup_expired_carts() == 0
        assert repo.count_by_status()[CartStatus.ACTIVE] == 1

    def test_counters_accumulate(self, session_service, service, clock):
        add(service, "user-a")
        clock.advance(hours=25)
        session_service.cleanup_expired_carts()

        add(service, "user-b")
        clock.advance(hours=25)
        session_service.cleanup_expired_carts()

        assert session_service.total_abandoned == 2
        assert session_service.last_cleanup_count == 1


class TestManualCleanup:
    def test_dry_run_changes_nothing(self, session_service, service, repo, clock):
        add(service, "user-a")
        add(service, "user-b")
        clock.advance(hours=25)

        result = session_service.perform_manual_cleanup(dry_run=True)

        assert result.success is True
        assert result.items_processed == 0
        assert "would abandon 2 carts" in result.message
        assert repo.count_by_status()[CartStatus.ACTIVE] == 2

    def test_real_run(self, session_service, service, clock):
        add(service)
        clock.advance(hours=25)

        result = session_service.perform_manual_cleanup()

        assert result.success is True
        assert result.items_processed == 1


class TestHealthCheck:
    def test_returns_counts_by_status(self, session_service, service):
        add(service, "user-a")
        add(service, "user-b")
        service.complete_cart("user-b")

        stats = session_service.perform_health_check()

        assert stats[CartStatus.ACTIVE] == 1
        assert stats[CartStatus.COMPLETED] == 1
        assert stats[CartStatus.ABANDONED] == 0

    def test_disabled_metrics(self, service, repo):
        disabled = CartSessionService(service, repo, metrics_enabled=False)
        assert disabled.perform_health_check() is None

    def test_warns_on_high_abandon_ratio(self, session_service, service, clock, caplog, monkeypatch):
        add(service)
        clock.advance(hours=25)
        session_service.cleanup_expired_carts()

        # logger "app" ma wlasny handler, caplog slucha na root
        monkeypatch.setattr(logging.getLogger("app"), "propagate", True)
        with caplog.at_level(logging.WARNING, logger="app"):
            session_service.perform_health_check()

        assert "High cart abandonment ratio" in caplog.text

    def test_system_metrics(self, session_service, service, clock):
        add(service)
        clock.advance(hours=25)
        session_service.cleanup_expired_carts()

        metrics = session_service.get_system_metrics()

        assert metrics.abandoned_carts == 1
        assert metrics.active_carts == 0
        assert metrics.total_abandoned == 1
        assert metrics.cleanup_enabled is True


class DownRepo(InMemoryCartRepo):
    """Maintenance queries fail the way SqlCartRepo does when the database is gone."""

    def find_stale_active(self, older_than, limit):
        raise StorageError("db down")

    def count_by_status(self):
        raise StorageError("db down")

    def count_active_since(self, since):
        raise StorageError("db down")


class TestStorageFailures:
    @pytest.fixture
    def down_service(self, policy, clock, sleeps):
        repo = DownRepo()
        cart_service = CartService(repo, policy=policy, clock=clock, sleep=sleeps)
        return CartSessionService(cart_service, repo, cleanup_enabled=True, metrics_enabled=True)

    def test_scheduled_cleanup_counts_failed_run(self, down_service):
        assert down_service.cleanup_expired_carts() == 0
        assert down_service.total_errors == 1
        assert down_service.last_cleanup_time is None

    def test_manual_cleanup_reports_failure(self, down_service):
        result = down_service.perform_manual_cleanup()

        assert result.success is False
        assert result.items_processed == 0
        assert result.message == "Cleanup failed: db down"

    def test_dry_run_reports_failure(self, down_service):
        result = down_service.perform_manual_cleanup(dry_run=True)
        assert result.success is False

    def test_health_check_returns_none(self, down_service):
        assert down_service.perform_health_check() is None

    def test_system_metrics_are_empty(self, down_service):
        down_service.cleanup_expired_carts()

        assert down_service.get_system_metrics() == SystemMetrics()

    def test_failed_run_raises_error_rate_warning(self, session_service, service, repo, caplog, monkeypatch):
        def broken(older_than, limit):
            raise StorageError("db down")

        monkeypatch.setattr(repo, "find_stale_active", broken)
        session_service.cleanup_expired_carts()
        monkeypatch.undo()

        monkeypatch.setattr(logging.getLogger("app"), "propagate", True)
        with caplog.at_level(logging.WARNING, logger="app"):
            session_service.perform_health_check()

        assert "High cleanup error rate" in caplog.text
