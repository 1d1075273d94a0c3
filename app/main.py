# app/main.py
from fastapi import FastAPI
import uvicorn

from app.api import create_app as create_api
from app.data.database import Base, engine
from app.utils.logging import get_logger

# IMPORT WSZYSTKICH MODELI PRZED CREATE_ALL
from app.data.models import CartModel, CartItemModel  # noqa: F401

logger = get_logger(__name__)


def init_db():
    logger.info(f"Initializing database, tables: {list(Base.metadata.tables.keys())}")
    try:
        Base.metadata.create_all(bind=engine)
    except Exception:
        logger.exception("Failed to create tables")
        raise
    logger.info("Database tables created")


def create_app() -> FastAPI:
    init_db()
    return create_api()


app = create_app()

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
