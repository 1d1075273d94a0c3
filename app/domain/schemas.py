# app/domain/schemas.py
from pydantic import BaseModel, Field, ConfigDict
from typing import List
from datetime import datetime


class AddItemIn(BaseModel):
    """Schema dla dodawania artykulu do koszyka."""

    article_id: int = Field(..., description="ID artykulu")
    article_name: str = Field(..., min_length=1, max_length=100, description="Nazwa artykulu")
    quantity: int = Field(..., gt=0, le=999, description="Ilosc (1..999)")
    price: float = Field(..., ge=0, description="Cena jednostkowa (>= 0)")


class UpdateItemIn(BaseModel):
    """Schema dla zmiany ilosci artykulu."""

    article_id: int
    quantity: int = Field(..., gt=0, le=999)


class CartItemOut(BaseModel):
    article_id: int
    article_name: str
    quantity: int
    price: float
    subtotal: float

    model_config = ConfigDict(from_attributes=True)


class CartOut(BaseModel):
    """Schema dla koszyka (response)."""

    cart_id: int
    user_id: str
    status: str
    session_id: str
    items: List[CartItemOut]
    total: float
    version: int
    last_activity: datetime
    created_at: datetime
    expires_at: datetime


class CartExpiryOut(BaseModel):
    cart_id: int
    session_id: str
    last_activity: datetime
    expires_at: datetime
    remaining_seconds: int
    approaching_expiry: bool


class ErrorOut(BaseModel):
    """Ten sam ksztalt co odpowiedz bledu w pozostalych serwisach."""

    message: str
    error: str
    timestamp: datetime
