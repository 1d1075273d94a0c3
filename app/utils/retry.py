# app/utils/retry.py
import logging
import time

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from app.domain.exceptions import VersionConflictError
from app.utils.logging import get_logger

logger = get_logger(__name__)


def version_conflict_retry(max_attempts: int, base_delay_ms: int, sleep=time.sleep) -> Retrying:
    """
    Jedna strategia ponowien dla wszystkich komend na koszyku.

    Ponawiamy tylko VersionConflictError (przegrany compare-and-swap),
    z przerwa base_delay * numer proby (100ms, 200ms, ...).
    Walidacja i bledy bazy leca od razu dalej.
    Po wyczerpaniu prob tenacity rzuca RetryError.
    """
    base = base_delay_ms / 1000.0
    return Retrying(
        reraise=False,
        stop=stop_after_attempt(max_attempts),
        wait=wait_incrementing(start=base, increment=base),
        retry=retry_if_exception_type(VersionConflictError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        sleep=sleep,
    )
