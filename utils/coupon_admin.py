# utils/coupon_admin.py
# =============================================================================
# Verwaltung von Coupons: Anlegen, Ändern, Abfragen, Löschen,
# Massen-Generierung, Statistiken und Ablauf-Sweep
# =============================================================================

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import distinct, func, select, update
from sqlalchemy.orm import Session

from models.coupon import (
    SCOPE_RESTRICTION_FIELD,
    Coupon,
    CouponScope,
    CouponStatus,
    CouponType,
    StackabilityRule,
)
from models.coupon_usage import CouponUsage
from utils.clock import SystemClock, as_utc
from utils.coupon_cache import CouponCache, NullCouponCache
from utils.coupon_codes import CodeRegistry, generate_code, normalize_code
from utils.coupon_errors import CodeConflict, CouponNotFound, InvalidCouponInput
from utils.coupon_repository import CouponRepository
from utils.coupon_schema import (
    BulkGenerateIn,
    CouponQuery,
    CreateCouponIn,
    UpdateCouponIn,
)
from utils.discount import CENT

logger = logging.getLogger(__name__)

MAX_QUERY_LIMIT = 100
BULK_CODE_ATTEMPTS = 5

# Spalten ohne NULL: ein explizites null im PATCH ist ungültig
REQUIRED_UPDATE_FIELDS = ("name", "status", "discount_value", "stackability_rule", "minimum_amount")


# =============================================================================
# ✅ Prüfregeln
# =============================================================================
def check_discount_config(
    coupon_type: CouponType, discount_value: Decimal, currency: Optional[str]
) -> None:
    if coupon_type is CouponType.PERCENTAGE and not (0 <= discount_value <= 100):
        raise InvalidCouponInput("Percentage discount must be between 0 and 100")
    if coupon_type is CouponType.FIXED and (not currency or discount_value < 0):
        raise InvalidCouponInput("Fixed discount requires currency and positive value")


def check_window(starts_at: Optional[datetime], expires_at: Optional[datetime]) -> None:
    if starts_at and expires_at and as_utc(starts_at) >= as_utc(expires_at):
        raise InvalidCouponInput("Start date must be before expiration date")


def check_scope(scope: CouponScope, refs: dict[str, Any]) -> None:
    field = SCOPE_RESTRICTION_FIELD.get(scope)
    if field and not refs.get(field):
        raise InvalidCouponInput(f"Scope '{scope.value}' requires {field}")


def check_affiliate(affiliate_id: Optional[str], commission: Decimal) -> None:
    if affiliate_id and not (0 < commission <= 100):
        raise InvalidCouponInput("Affiliate commission must be between 0 and 100")


def check_stacking(rule: StackabilityRule, category: Optional[str]) -> None:
    if rule is StackabilityRule.CATEGORY and not category:
        raise InvalidCouponInput("Category stacking requires a category")


def _invalidate(cache: CouponCache, code: str) -> None:
    try:
        cache.invalidate(code)
    except Exception as exc:
        logger.warning("⚠️ Cache invalidation failed for %s: %s", code, exc)


# =============================================================================
# ✅ CRUD
# =============================================================================
def create_coupon(
    db: Session,
    payload: CreateCouponIn,
    created_by: str,
    *,
    registry: Optional[CodeRegistry] = None,
    cache: Optional[CouponCache] = None,
) -> Coupon:
    registry = registry or CodeRegistry()
    cache = cache or NullCouponCache()

    code = normalize_code(payload.code)
    check_discount_config(payload.type, payload.discount_value, payload.currency)
    check_window(payload.starts_at, payload.expires_at)
    check_affiliate(payload.affiliate_id, payload.affiliate_commission)
    check_scope(payload.scope, payload.model_dump())
    check_stacking(payload.stackability_rule, payload.category)

    coupon = Coupon(
        code=code,
        name=payload.name,
        description=payload.description,
        type=payload.type,
        scope=payload.scope,
        status=CouponStatus.ACTIVE,
        discount_value=payload.discount_value,
        currency=payload.currency.upper() if payload.currency else None,
        max_uses=payload.max_uses,
        max_uses_per_user=payload.max_uses_per_user,
        current_uses=0,
        starts_at=as_utc(payload.starts_at),
        expires_at=as_utc(payload.expires_at),
        stackability_rule=payload.stackability_rule,
        category=payload.category,
        user_id=payload.user_id,
        event_id=payload.event_id,
        category_id=payload.category_id,
        affiliate_id=payload.affiliate_id,
        affiliate_commission=payload.affiliate_commission,
        minimum_amount=payload.minimum_amount,
        maximum_discount=payload.maximum_discount,
        metadata_json=payload.metadata,
        created_by=created_by,
    )
    registry.reserve(db, coupon)
    db.commit()
    db.refresh(coupon)

    _invalidate(cache, coupon.code)
    logger.info("✅ Coupon %s angelegt (ID %s)", coupon.code, coupon.id)
    return coupon


def get_coupon(db: Session, coupon_id: str) -> Coupon:
    coupon = CouponRepository(db).get_by_id(coupon_id)
    if coupon is None:
        raise CouponNotFound()
    return coupon


def update_coupon(
    db: Session,
    coupon_id: str,
    payload: UpdateCouponIn,
    updated_by: str,
    *,
    cache: Optional[CouponCache] = None,
) -> Coupon:
    cache = cache or NullCouponCache()
    coupon = get_coupon(db, coupon_id)
    changes = payload.model_dump(exclude_unset=True)
    for field in REQUIRED_UPDATE_FIELDS:
        if field in changes and changes[field] is None:
            raise InvalidCouponInput(f"{field} must not be null")

    new_status = changes.get("status")
    if new_status is not None and new_status != coupon.status:
        if coupon.status.is_terminal:
            raise InvalidCouponInput(f"Coupon is {coupon.status.value} and cannot be changed")
        if new_status.is_terminal:
            raise InvalidCouponInput(f"Status '{new_status.value}' is set automatically")

    # Regeln immer gegen den Zustand nach dem Update prüfen, auch bei null
    def effective(field: str) -> Any:
        return changes[field] if field in changes else getattr(coupon, field)

    check_discount_config(coupon.type, effective("discount_value"), effective("currency"))
    check_window(effective("starts_at"), effective("expires_at"))

    if changes.get("max_uses") is not None and changes["max_uses"] < coupon.current_uses:
        raise InvalidCouponInput("Maximum uses cannot be below current uses")

    check_stacking(effective("stackability_rule"), effective("category"))

    if "metadata" in changes:
        changes["metadata_json"] = changes.pop("metadata")
    if changes.get("currency"):
        changes["currency"] = changes["currency"].upper()
    for field in ("starts_at", "expires_at"):
        if changes.get(field) is not None:
            changes[field] = as_utc(changes[field])

    for field, value in changes.items():
        setattr(coupon, field, value)
    coupon.updated_by = updated_by

    db.commit()
    db.refresh(coupon)
    _invalidate(cache, coupon.code)
    logger.info("✏️ Coupon %s aktualisiert", coupon.code)
    return coupon


def delete_coupon(db: Session, coupon_id: str, *, cache: Optional[CouponCache] = None) -> None:
    cache = cache or NullCouponCache()
    coupon = get_coupon(db, coupon_id)
    if CouponRepository(db).count_usages(coupon.id) > 0:
        raise InvalidCouponInput("Cannot delete coupon that has been used")

    code = coupon.code
    db.delete(coupon)
    db.commit()
    _invalidate(cache, code)
    logger.info("🗑️ Coupon %s gelöscht", code)


def query_coupons(db: Session, query: CouponQuery) -> tuple[list[Coupon], int]:
    stmt = select(Coupon)

    if query.code:
        stmt = stmt.where(Coupon.code.ilike(f"%{query.code}%"))
    if query.status:
        stmt = stmt.where(Coupon.status == query.status)
    if query.type:
        stmt = stmt.where(Coupon.type == query.type)
    if query.scope:
        stmt = stmt.where(Coupon.scope == query.scope)
    if query.created_by:
        stmt = stmt.where(Coupon.created_by == query.created_by)
    if query.affiliate_id:
        stmt = stmt.where(Coupon.affiliate_id == query.affiliate_id)
    if query.user_id:
        stmt = stmt.where(Coupon.user_id == query.user_id)
    if query.event_id:
        stmt = stmt.where(Coupon.event_id == query.event_id)
    if query.category:
        stmt = stmt.where(Coupon.category == query.category)
    if query.expires_before:
        stmt = stmt.where(Coupon.expires_at <= as_utc(query.expires_before))
    if query.expires_after:
        stmt = stmt.where(Coupon.expires_at >= as_utc(query.expires_after))

    total = db.scalar(select(func.count()).select_from(stmt.subquery())) or 0

    limit = max(1, min(query.limit, MAX_QUERY_LIMIT))
    rows = db.scalars(
        stmt.order_by(Coupon.created_at.desc()).limit(limit).offset(query.offset)
    ).all()
    return list(rows), total


# =============================================================================
# ✅ Massen-Generierung
# =============================================================================
def _unique_codes(db: Session, registry: CodeRegistry, prefix: str, count: int) -> list[str]:
    codes = [generate_code(prefix, i) for i in range(count)]
    for _ in range(BULK_CODE_ATTEMPTS):
        seen: set[str] = set()
        clashes = set(registry.taken_codes(db, codes))
        for code in codes:
            if code in seen:
                clashes.add(code)
            seen.add(code)
        if not clashes:
            return codes
        codes = [
            generate_code(prefix, i) if code in clashes else code
            for i, code in enumerate(codes)
        ]
    raise CodeConflict(prefix)


def bulk_generate(
    db: Session,
    payload: BulkGenerateIn,
    created_by: str,
    *,
    registry: Optional[CodeRegistry] = None,
    cache: Optional[CouponCache] = None,
) -> list[Coupon]:
    registry = registry or CodeRegistry()
    cache = cache or NullCouponCache()

    check_discount_config(payload.type, payload.discount_value, payload.currency)
    check_window(payload.starts_at, payload.expires_at)
    check_stacking(payload.stackability_rule, payload.category)

    codes = _unique_codes(db, registry, payload.name_prefix, payload.count)
    coupons = [
        Coupon(
            code=code,
            name=f"{payload.name_prefix} {i + 1}",
            description=payload.description,
            type=payload.type,
            scope=CouponScope.GLOBAL,
            status=CouponStatus.ACTIVE,
            discount_value=payload.discount_value,
            currency=payload.currency.upper() if payload.currency else None,
            max_uses=payload.max_uses,
            max_uses_per_user=payload.max_uses_per_user,
            current_uses=0,
            starts_at=as_utc(payload.starts_at),
            expires_at=as_utc(payload.expires_at),
            stackability_rule=payload.stackability_rule,
            category=payload.category,
            minimum_amount=payload.minimum_amount,
            maximum_discount=payload.maximum_discount,
            created_by=created_by,
        )
        for i, code in enumerate(codes)
    ]
    registry.reserve_batch(db, coupons)
    db.commit()

    for coupon in coupons:
        _invalidate(cache, coupon.code)
    logger.info("📦 %s Coupons mit Präfix '%s' generiert", len(coupons), payload.name_prefix)
    return coupons


# =============================================================================
# ✅ Statistiken & Historie
# =============================================================================
def usage_stats(db: Session, coupon_id: str) -> dict[str, Any]:
    coupon = get_coupon(db, coupon_id)
    total_uses, unique_users, total_discount = db.execute(
        select(
            func.count(CouponUsage.id),
            func.count(distinct(CouponUsage.user_id)),
            func.coalesce(func.sum(CouponUsage.discount_amount), 0),
        ).where(CouponUsage.coupon_id == coupon.id)
    ).one()

    total_discount = Decimal(str(total_discount)).quantize(CENT)
    average = (total_discount / total_uses).quantize(CENT) if total_uses else Decimal("0.00")
    return {
        "total_uses": total_uses,
        "unique_users": unique_users,
        "total_discount_amount": total_discount,
        "average_discount": average,
    }


def user_history(db: Session, user_id: str, limit: int = 20, offset: int = 0) -> list[CouponUsage]:
    limit = max(1, min(limit, MAX_QUERY_LIMIT))
    return list(
        db.scalars(
            select(CouponUsage)
            .where(CouponUsage.user_id == user_id)
            .order_by(CouponUsage.used_at.desc())
            .limit(limit)
            .offset(max(0, offset))
        )
    )


# =============================================================================
# ✅ Ablauf-Sweep (für geplante Jobs)
# =============================================================================
def expire_coupons(db: Session, clock=None, cache: Optional[CouponCache] = None) -> int:
    """Setzt aktive Coupons mit abgelaufenem ``expires_at`` auf ``expired``."""
    clock = clock or SystemClock()
    cache = cache or NullCouponCache()
    now = clock.now()

    due = (
        Coupon.status == CouponStatus.ACTIVE,
        Coupon.expires_at.is_not(None),
        Coupon.expires_at <= now,
    )
    codes = list(db.scalars(select(Coupon.code).where(*due)))
    if not codes:
        return 0

    result = db.execute(
        update(Coupon)
        .where(*due)
        .values(status=CouponStatus.EXPIRED, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()

    for code in codes:
        _invalidate(cache, code)
    logger.info("⏰ %s Coupons als abgelaufen markiert", result.rowcount)
    return result.rowcount
