"""API Models - Pydantic models for records returned by the storefront REST API."""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from storefront.services.money import to_decimal as _to_decimal


class Product(BaseModel):
    """Live product record, as far as availability is concerned."""
    id: str = Field(alias="_id")
    name: Optional[str] = None
    price: Decimal = Decimal("0")
    stock: int = 0
    in_stock: Optional[bool] = Field(default=None, alias="inStock")

    class Config:
        extra = "ignore"
        populate_by_name = True

    @field_validator("price", mode="before")
    @classmethod
    def convert_price_to_decimal(cls, v):
        return _to_decimal(v)

    @field_validator("stock", mode="before")
    @classmethod
    def coerce_stock(cls, v):
        try:
            return max(0, int(v or 0))
        except (TypeError, ValueError):
            return 0

    @property
    def is_available(self) -> bool:
        """Explicitly unavailable or zero stock counts as out of stock."""
        return self.in_stock is not False and self.stock > 0


class Coupon(BaseModel):
    """Coupon as returned by the coupon lookup endpoint."""
    code: str
    discount_type: str = Field(default="fixed", alias="discountType")  # percentage | fixed
    discount_value: Decimal = Field(default=Decimal("0"), alias="discountValue")
    max_discount: Optional[Decimal] = Field(default=None, alias="maxDiscount")
    min_purchase: Decimal = Field(default=Decimal("0"), alias="minPurchase")
    is_active: bool = Field(default=True, alias="isActive")
    valid_from: Optional[datetime] = Field(default=None, alias="validFrom")
    valid_until: Optional[datetime] = Field(default=None, alias="validUntil")
    usage_limit: int = Field(default=0, alias="usageLimit")
    used_count: int = Field(default=0, alias="usedCount")

    class Config:
        extra = "ignore"
        populate_by_name = True

    @field_validator("discount_value", "min_purchase", mode="before")
    @classmethod
    def convert_to_decimal(cls, v):
        return _to_decimal(v)

    @field_validator("max_discount", mode="before")
    @classmethod
    def convert_optional_to_decimal(cls, v):
        return _to_decimal(v) if v else None


class Order(BaseModel):
    """Server-owned order record; read-only from the checkout core."""
    id: Optional[str] = Field(default=None, alias="_id")
    order_number: Optional[str] = Field(default=None, alias="orderNumber")
    payment_method: Optional[str] = Field(default=None, alias="paymentMethod")
    total_price: Optional[Decimal] = Field(default=None, alias="totalPrice")

    class Config:
        extra = "allow"
        populate_by_name = True

    @property
    def reference(self) -> Optional[str]:
        return self.id or self.order_number
