# utils/coupon_schema.py
"""
Pydantic-Modelle für Coupon-Anfragen und -Antworten.
JSON-Felder in camelCase, Python-Attribute in snake_case.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from models.coupon import CouponScope, CouponStatus, CouponType, StackabilityRule


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# ✅ Verwaltung
# =============================================================================
class CreateCouponIn(CamelModel):
    code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    type: CouponType
    scope: CouponScope = CouponScope.GLOBAL
    discount_value: Decimal = Field(..., ge=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    max_uses: Optional[int] = Field(default=None, ge=1)
    max_uses_per_user: Optional[int] = Field(default=None, ge=1)
    expires_at: Optional[datetime] = None
    starts_at: Optional[datetime] = None
    stackability_rule: StackabilityRule = StackabilityRule.ALL
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    user_id: Optional[str] = None
    event_id: Optional[str] = None
    category_id: Optional[str] = None
    affiliate_id: Optional[str] = None
    affiliate_commission: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    minimum_amount: Decimal = Field(default=Decimal("0"), ge=0)
    maximum_discount: Optional[Decimal] = Field(default=None, ge=0)
    metadata: Optional[dict[str, Any]] = None


class UpdateCouponIn(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    status: Optional[CouponStatus] = None
    discount_value: Optional[Decimal] = Field(default=None, ge=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    max_uses: Optional[int] = Field(default=None, ge=1)
    max_uses_per_user: Optional[int] = Field(default=None, ge=1)
    expires_at: Optional[datetime] = None
    starts_at: Optional[datetime] = None
    stackability_rule: Optional[StackabilityRule] = None
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    minimum_amount: Optional[Decimal] = Field(default=None, ge=0)
    maximum_discount: Optional[Decimal] = Field(default=None, ge=0)
    metadata: Optional[dict[str, Any]] = None


class BulkGenerateIn(CamelModel):
    name_prefix: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    type: CouponType
    discount_value: Decimal = Field(..., ge=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    count: int = Field(..., ge=1, le=10000)
    max_uses: Optional[int] = Field(default=None, ge=1)
    max_uses_per_user: Optional[int] = Field(default=None, ge=1)
    expires_at: Optional[datetime] = None
    starts_at: Optional[datetime] = None
    stackability_rule: StackabilityRule = StackabilityRule.ALL
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    minimum_amount: Decimal = Field(default=Decimal("0"), ge=0)
    maximum_discount: Optional[Decimal] = Field(default=None, ge=0)


class CouponQuery(CamelModel):
    code: Optional[str] = None
    status: Optional[CouponStatus] = None
    type: Optional[CouponType] = None
    scope: Optional[CouponScope] = None
    created_by: Optional[str] = None
    affiliate_id: Optional[str] = None
    user_id: Optional[str] = None
    event_id: Optional[str] = None
    category: Optional[str] = None
    expires_before: Optional[datetime] = None
    expires_after: Optional[datetime] = None
    limit: int = Field(default=20, ge=1, le=100)
    offset: int = Field(default=0, ge=0)


# =============================================================================
# ✅ Validieren & Einlösen
# =============================================================================
class ValidateCouponIn(CamelModel):
    code: str = Field(..., min_length=1, max_length=50)
    user_id: str = Field(..., min_length=1)
    order_amount: Optional[Decimal] = Field(default=None, ge=0)
    existing_coupons: list[str] = Field(default_factory=list)
    event_id: Optional[str] = None
    category_id: Optional[str] = None
    product_ids: list[str] = Field(default_factory=list)


class ApplyCouponIn(CamelModel):
    code: str = Field(..., min_length=1, max_length=50)
    user_id: str = Field(..., min_length=1)
    order_amount: Decimal = Field(..., ge=0)
    order_id: Optional[str] = None
    existing_coupons: list[str] = Field(default_factory=list)
    event_id: Optional[str] = None
    category_id: Optional[str] = None
    product_ids: list[str] = Field(default_factory=list)


class CouponSummaryOut(CamelModel):
    id: str
    code: str
    name: str
    type: str
    discount_value: Decimal
    currency: Optional[str] = None
    minimum_amount: Optional[Decimal] = None
    maximum_discount: Optional[Decimal] = None


class ValidationOut(CamelModel):
    is_valid: bool
    error_message: Optional[str] = None
    reason: Optional[str] = None
    coupon: Optional[CouponSummaryOut] = None
    discount_amount: Optional[Decimal] = None
    final_amount: Optional[Decimal] = None


class ApplicationOut(CamelModel):
    success: bool
    error_message: Optional[str] = None
    reason: Optional[str] = None
    coupon: Optional[CouponSummaryOut] = None
    discount_amount: Optional[Decimal] = None
    final_amount: Optional[Decimal] = None
    usage_id: Optional[str] = None


class CouponOut(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: str
    code: str
    name: str
    description: Optional[str] = None
    type: CouponType
    status: CouponStatus
    scope: CouponScope
    discount_value: Decimal
    currency: Optional[str] = None
    max_uses: Optional[int] = None
    max_uses_per_user: Optional[int] = None
    current_uses: int
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    stackability_rule: StackabilityRule
    category: Optional[str] = None
    user_id: Optional[str] = None
    event_id: Optional[str] = None
    category_id: Optional[str] = None
    affiliate_id: Optional[str] = None
    affiliate_commission: Decimal
    minimum_amount: Decimal
    maximum_discount: Optional[Decimal] = None
    metadata: Optional[dict[str, Any]] = Field(default=None, validation_alias="metadata_json")
    created_by: str
    updated_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CouponUsageOut(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: str
    coupon_id: str
    user_id: str
    order_id: Optional[str] = None
    discount_amount: Decimal
    currency: Optional[str] = None
    used_at: datetime


class UsageStatsOut(CamelModel):
    total_uses: int
    unique_users: int
    total_discount_amount: Decimal
    average_discount: Decimal


class CouponListOut(CamelModel):
    coupons: list[CouponOut]
    total: int
