import threading

from app.celery_worker import celery_app
from app.data.database import SessionLocal
from app.repos.cart_repo import SqlCartRepo
from app.services.cart_service import CartService
from app.services.session_service import CartSessionService
from app.utils.logging import get_logger

logger = get_logger(__name__)

# jeden obiekt na proces workera, zeby metryki cleanupu sie sumowaly
_service: CartSessionService | None = None
# bind() podmienia sesje db na wspolnym obiekcie, przy puli watkow
# taski nie moga sie przeplatac
_service_lock = threading.Lock()


def _session_service(db) -> CartSessionService:
    global _service
    repo = SqlCartRepo(db)
    if _service is None:
        _service = CartSessionService(cart_service=CartService(repo), repo=repo)
    else:
        _service.bind(repo)
    return _service


@celery_app.task(name="app.tasks.expire.expire_carts_task")
def expire_carts_task():
    logger.info("Expire carts task started")

    db = SessionLocal()
    try:
        with _service_lock:
            abandoned = _session_service(db).cleanup_expired_carts()
        return {"abandoned": abandoned}
    finally:
        db.close()


@celery_app.task(name="app.tasks.expire.cart_health_check_task")
def cart_health_check_task():
    db = SessionLocal()
    try:
        with _service_lock:
            stats = _session_service(db).perform_health_check()
        if stats is None:
            return None
        return {status.value: count for status, count in stats.items()}
    finally:
        db.close()
