# app/services/session_service.py
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional

from app.domain.cart import CartStatus
from app.domain.exceptions import CartError
from app.repos.base import CartRepository
from app.services.cart_service import CartService, SweepResult
from app.utils.settings import (
    CART_CLEANUP_BATCH_SIZE,
    CART_CLEANUP_ENABLED,
    CART_METRICS_ENABLED,
)
from app.utils.logging import get_logger

logger = get_logger(__name__)

HIGH_ACTIVE_CARTS = 10000
HIGH_ABANDON_RATIO = 0.8
HIGH_CLEANUP_ERROR_RATE = 0.05
CLEANUP_OVERDUE = timedelta(hours=8)
SLOW_CLEANUP_MS = 30000


@dataclass
class CleanupResult:
    success: bool
    items_processed: int
    duration_ms: int
    message: str


@dataclass
class SystemMetrics:
    active_carts: int = 0
    abandoned_carts: int = 0
    completed_carts: int = 0
    recent_active_carts: int = 0
    total_processed: int = 0
    total_abandoned: int = 0
    total_errors: int = 0
    last_cleanup_count: int = 0
    last_cleanup_time: Optional[datetime] = None
    last_metrics_time: Optional[datetime] = None
    cleanup_enabled: bool = False
    metrics_enabled: bool = False


class CartSessionService:
    """
    Utrzymanie sesji koszykow: okresowy cleanup, metryki, health check.
    Wolane z taskow celery (app/tasks/expire.py).
    """

    def __init__(
        self,
        cart_service: CartService,
        repo: CartRepository,
        cleanup_enabled: bool = CART_CLEANUP_ENABLED,
        metrics_enabled: bool = CART_METRICS_ENABLED,
        batch_size: int = CART_CLEANUP_BATCH_SIZE,
    ):
        self.cart_service = cart_service
        self.repo = repo
        self.cleanup_enabled = cleanup_enabled
        self.metrics_enabled = metrics_enabled
        self.batch_size = batch_size

        self._lock = threading.Lock()
        self.total_processed = 0
        self.total_abandoned = 0
        self.total_errors = 0
        self.last_cleanup_count = 0
        self.last_cleanup_time: Optional[datetime] = None
        self.last_metrics_time: Optional[datetime] = None

    def bind(self, repo: CartRepository):
        # nowa sesja db na kazde uruchomienie taska, liczniki zostaja
        self.repo = repo
        self.cart_service.repo = repo

    def cleanup_expired_carts(self) -> int:
        if not self.cleanup_enabled:
            logger.debug("Cart cleanup is disabled, skipping cleanup task")
            return 0

        logger.info("Starting scheduled cart cleanup task")
        start = time.monotonic()

        try:
            result = self.cart_service.cleanup_expired_carts(batch_size=self.batch_size)
        except CartError as e:
            with self._lock:
                self.total_errors += 1
            logger.error(f"Error during scheduled cart cleanup: {e.message}")
            return 0
        duration_ms = self._elapsed_ms(start)

        self._record(result)

        logger.info(
            f"Cart cleanup completed: {result.abandoned}/{result.examined} carts abandoned, "
            f"{result.conflicts} conflicts, {result.failures} errors in {duration_ms}ms"
        )
        if duration_ms > SLOW_CLEANUP_MS:
            logger.warning(f"Cart cleanup took longer than expected: {duration_ms}ms")

        return result.abandoned

    def perform_manual_cleanup(self, dry_run: bool = False) -> CleanupResult:
        logger.info(f"Performing manual cart cleanup (dry run: {dry_run})")
        start = time.monotonic()

        try:
            if dry_run:
                now = self.cart_service.clock()
                candidates = self.repo.find_stale_active(now - self.cart_service.policy.ttl, self.batch_size)
                return CleanupResult(
                    success=True,
                    items_processed=0,
                    duration_ms=self._elapsed_ms(start),
                    message=f"Dry run completed - would abandon {len(candidates)} carts",
                )

            result = self.cart_service.cleanup_expired_carts(batch_size=self.batch_size)
        except CartError as e:
            logger.error(f"Manual cart cleanup failed: {e.message}")
            return CleanupResult(
                success=False,
                items_processed=0,
                duration_ms=self._elapsed_ms(start),
                message=f"Cleanup failed: {e.message}",
            )

        self._record(result)

        return CleanupResult(
            success=result.failures == 0,
            items_processed=result.abandoned,
            duration_ms=self._elapsed_ms(start),
            message="Manual cleanup completed successfully"
            if result.failures == 0
            else f"Manual cleanup finished with {result.failures} errors",
        )

    @staticmethod
    def _elapsed_ms(start: float) -> int:
        return int((time.monotonic() - start) * 1000)

    def _record(self, result: SweepResult):
        with self._lock:
            self.total_processed += result.examined
            self.total_abandoned += result.abandoned
            self.total_errors += result.failures
            self.last_cleanup_count = result.abandoned
            self.last_cleanup_time = self.cart_service.clock()

    def perform_health_check(self) -> Optional[Dict[CartStatus, int]]:
        if not self.metrics_enabled:
            return None

        logger.debug("Performing cart system health check")
        try:
            stats = self.repo.count_by_status()
            now = self.cart_service.clock()
            recent = self.repo.count_active_since(now - self.cart_service.policy.ttl)
        except CartError as e:
            logger.warning(f"Error during cart health check: {e.message}")
            return None

        logger.info(
            f"Cart system metrics: active={stats[CartStatus.ACTIVE]} "
            f"abandoned={stats[CartStatus.ABANDONED]} completed={stats[CartStatus.COMPLETED]} "
            f"recent_active={recent} cleanup_processed={self.total_processed} "
            f"cleanup_errors={self.total_errors} last_cleanup_count={self.last_cleanup_count}"
        )
        self._check_system_health(stats, now)
        self.last_metrics_time = now
        return stats

    def _check_system_health(self, stats: Dict[CartStatus, int], now: datetime):
        active = stats[CartStatus.ACTIVE]
        if active > HIGH_ACTIVE_CARTS:
            logger.warning(f"High number of active carts detected: {active}")

        total = sum(stats.values())
        if total:
            ratio = stats[CartStatus.ABANDONED] / total
            if ratio > HIGH_ABANDON_RATIO:
                logger.warning(f"High cart abandonment ratio: {ratio:.2%}")

        # nieudany caly przebieg liczy sie jako blad bez przetworzonych koszykow
        if self.total_errors:
            error_rate = self.total_errors / max(self.total_processed, 1)
            if error_rate > HIGH_CLEANUP_ERROR_RATE:
                logger.warning(f"High cleanup error rate: {error_rate:.2%}")

        if self.last_cleanup_time and now - self.last_cleanup_time > CLEANUP_OVERDUE:
            logger.warning(f"Cart cleanup hasn't run recently. Last cleanup: {self.last_cleanup_time.isoformat()}")

    def get_system_metrics(self) -> SystemMetrics:
        try:
            stats = self.repo.count_by_status()
            now = self.cart_service.clock()
            recent = self.repo.count_active_since(now - self.cart_service.policy.ttl)
        except CartError as e:
            logger.error(f"Error getting cart system metrics: {e.message}")
            return SystemMetrics()

        return SystemMetrics(
            active_carts=stats[CartStatus.ACTIVE],
            abandoned_carts=stats[CartStatus.ABANDONED],
            completed_carts=stats[CartStatus.COMPLETED],
            recent_active_carts=recent,
            total_processed=self.total_processed,
            total_abandoned=self.total_abandoned,
            total_errors=self.total_errors,
            last_cleanup_count=self.last_cleanup_count,
            last_cleanup_time=self.last_cleanup_time,
            last_metrics_time=self.last_metrics_time,
            cleanup_enabled=self.cleanup_enabled,
            metrics_enabled=self.metrics_enabled,
        )
