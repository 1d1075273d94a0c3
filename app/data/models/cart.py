#app/data/models/cart.py
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, DateTime, Float, Index
from sqlalchemy.orm import relationship

from app.data.database import Base


class CartModel(Base):
    __tablename__ = "carts"

    id = Column(Integer, primary_key=True)
    user_id = Column(String(255), nullable=False)

    status = Column(String(20), nullable=False, default="ACTIVE")
    total = Column(Float, nullable=False, default=0.0)
    # kolumna pod optimistic locking, UPDATE ... WHERE version = :expected
    version = Column(Integer, nullable=False, default=0)
    session_id = Column(String(32), nullable=False)

    last_activity = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    items = relationship(
        "CartItemModel",
        back_populates="cart",
        cascade="all, delete-orphan",
        order_by="CartItemModel.id",
    )

    __table_args__ = (
        Index("ix_carts_user_status", "user_id", "status"),
        Index("ix_carts_status_last_activity", "status", "last_activity"),
    )
