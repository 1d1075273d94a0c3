# app/celery_worker.py
from celery import Celery

from app.utils.settings import (
    CELERY_BROKER_URL,
    CELERY_RESULT_BACKEND,
    CART_CLEANUP_INTERVAL_SECONDS,
    CART_HEALTH_CHECK_INTERVAL_SECONDS,
)

celery_app = Celery(
    "cart",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
)

# WAŻNE: Explicite importuj taski, żeby Celery je zarejestrował
celery_app.conf.imports = ("app.tasks.expire",)

# Konfiguracja beat schedule
celery_app.conf.beat_schedule = {
    "expire-carts": {
        "task": "app.tasks.expire.expire_carts_task",
        "schedule": float(CART_CLEANUP_INTERVAL_SECONDS),  # domyslnie co 6h
    },
    "cart-health-check": {
        "task": "app.tasks.expire.cart_health_check_task",
        "schedule": float(CART_HEALTH_CHECK_INTERVAL_SECONDS),  # domyslnie co 30 min
    },
}

celery_app.conf.timezone = "UTC"
