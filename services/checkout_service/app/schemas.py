"""Pydantic schemas for the checkout HTTP adapter."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, PositiveInt


class CartItemAdd(BaseModel):
    product_id: int = Field(alias="productId")
    quantity: int

    model_config = ConfigDict(populate_by_name=True)


class CartItemUpdate(BaseModel):
    quantity: int


class CartItemResponse(BaseModel):
    id: PositiveInt
    product_id: PositiveInt = Field(alias="productId")
    name: str
    price: int
    quantity: PositiveInt

    model_config = ConfigDict(populate_by_name=True)


class CartResponse(BaseModel):
    id: PositiveInt
    items: list[CartItemResponse]
    total: int


class PlaceOrderRequest(BaseModel):
    address_id: int = Field(alias="addressId")

    model_config = ConfigDict(populate_by_name=True)


class OrderItemResponse(BaseModel):
    product_id: PositiveInt = Field(alias="productId")
    name: str
    price: int
    quantity: PositiveInt

    model_config = ConfigDict(populate_by_name=True)


class OrderResponse(BaseModel):
    id: PositiveInt
    user_id: PositiveInt = Field(alias="userId")
    status: str
    total_price: int = Field(alias="totalPrice")
    items: list[OrderItemResponse]
    created_at: datetime = Field(alias="createdAt")

    model_config = ConfigDict(populate_by_name=True)


class MyOrdersResponse(BaseModel):
    items: list[OrderResponse]


class OrderListResponse(BaseModel):
    items: list[OrderResponse]
    total: int
    page: PositiveInt
    limit: PositiveInt


class OrderStatusUpdate(BaseModel):
    status: str = Field(min_length=1, max_length=32)


class InventoryUpdate(BaseModel):
    new_stock: int = Field(alias="newStock")
    reason: str

    model_config = ConfigDict(populate_by_name=True)


class InventoryUpdateResponse(BaseModel):
    product_id: PositiveInt = Field(alias="productId")
    old_stock: int = Field(alias="oldStock")
    new_stock: int = Field(alias="newStock")
    delta: int

    model_config = ConfigDict(populate_by_name=True)
