# routes/coupons.py
# =============================================================================
# 🎟️ Coupon-API: Validieren, Einlösen und Verwaltung
# =============================================================================

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from sqlalchemy.orm import Session

from database import SessionLocal, get_db
from models.coupon import CouponScope, CouponStatus, CouponType
from utils import coupon_admin
from utils.clock import SystemClock
from utils.coupon_cache import CouponCache, build_coupon_cache
from utils.coupon_errors import (
    CodeConflict,
    CouponError,
    CouponNotFound,
    InvalidCouponInput,
    TransactionFailure,
)
from utils.coupon_schema import (
    ApplicationOut,
    ApplyCouponIn,
    BulkGenerateIn,
    CouponListOut,
    CouponOut,
    CouponQuery,
    CouponSummaryOut,
    CouponUsageOut,
    CreateCouponIn,
    UpdateCouponIn,
    UsageStatsOut,
    ValidateCouponIn,
    ValidationOut,
)
from utils.coupon_snapshot import CouponSnapshot
from utils.coupon_validation import CouponValidator, RedemptionContext
from utils.redemption import RedemptionCoordinator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/coupons", tags=["Coupons"])

_cache: Optional[CouponCache] = None


# -------------------------------------------------------------------------
# Abhängigkeiten (in Tests per dependency_overrides ersetzbar)
# -------------------------------------------------------------------------
def get_coupon_cache() -> CouponCache:
    global _cache
    if _cache is None:
        _cache = build_coupon_cache()
    return _cache


def get_clock():
    return SystemClock()


def get_session_factory() -> Callable[[], Session]:
    return SessionLocal


def get_validator(
    cache: CouponCache = Depends(get_coupon_cache),
    clock=Depends(get_clock),
) -> CouponValidator:
    return CouponValidator(cache=cache, clock=clock)


def get_coordinator(
    session_factory: Callable[[], Session] = Depends(get_session_factory),
    validator: CouponValidator = Depends(get_validator),
) -> RedemptionCoordinator:
    return RedemptionCoordinator(session_factory, validator)


def get_actor(x_user_id: Optional[str] = Header(default=None, alias="X-User-Id")) -> str:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id


def _http_error(exc: CouponError) -> HTTPException:
    if isinstance(exc, CouponNotFound):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, CodeConflict):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, InvalidCouponInput):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, TransactionFailure):
        return HTTPException(status_code=503, detail=str(exc))
    return HTTPException(status_code=500, detail="Coupon operation failed")


def _summary(snapshot: Optional[CouponSnapshot]) -> Optional[CouponSummaryOut]:
    if snapshot is None:
        return None
    return CouponSummaryOut(**snapshot.public_view())


def _context(payload: ValidateCouponIn | ApplyCouponIn) -> RedemptionContext:
    return RedemptionContext(
        user_id=payload.user_id,
        order_amount=payload.order_amount,
        existing_coupons=tuple(payload.existing_coupons),
        event_id=payload.event_id,
        category_id=payload.category_id,
        product_ids=tuple(payload.product_ids),
        order_id=getattr(payload, "order_id", None),
    )


# =============================================================================
# ✅ Validieren & Einlösen
# =============================================================================
@router.post("/validate", response_model=ValidationOut, response_model_exclude_none=True)
def validate_coupon(
    payload: ValidateCouponIn,
    db: Session = Depends(get_db),
    validator: CouponValidator = Depends(get_validator),
):
    try:
        verdict = validator.validate(db, payload.code, _context(payload))
    except CouponError as exc:
        raise _http_error(exc) from exc

    return ValidationOut(
        is_valid=verdict.valid,
        error_message=verdict.error_message,
        reason=verdict.reason.value if verdict.reason else None,
        coupon=_summary(verdict.coupon) if verdict.valid else None,
        discount_amount=verdict.discount_amount,
        final_amount=verdict.final_amount,
    )


@router.post("/apply", response_model=ApplicationOut, response_model_exclude_none=True)
def apply_coupon(
    payload: ApplyCouponIn,
    coordinator: RedemptionCoordinator = Depends(get_coordinator),
):
    try:
        result = coordinator.apply(payload.code, _context(payload))
    except CouponError as exc:
        raise _http_error(exc) from exc

    return ApplicationOut(
        success=result.success,
        error_message=result.error_message,
        reason=result.reason.value if result.reason else None,
        coupon=_summary(result.coupon),
        discount_amount=result.discount_amount,
        final_amount=result.final_amount,
        usage_id=result.usage_id,
    )


# =============================================================================
# ✅ Verwaltung
# =============================================================================
@router.post("", response_model=CouponOut, status_code=201)
def create_coupon(
    payload: CreateCouponIn,
    db: Session = Depends(get_db),
    actor: str = Depends(get_actor),
    cache: CouponCache = Depends(get_coupon_cache),
):
    try:
        return coupon_admin.create_coupon(db, payload, actor, cache=cache)
    except CouponError as exc:
        raise _http_error(exc) from exc


@router.get("", response_model=CouponListOut)
def list_coupons(
    code: Optional[str] = None,
    status: Optional[CouponStatus] = None,
    type: Optional[CouponType] = None,
    scope: Optional[CouponScope] = None,
    created_by: Optional[str] = None,
    affiliate_id: Optional[str] = None,
    user_id: Optional[str] = None,
    event_id: Optional[str] = None,
    category: Optional[str] = None,
    expires_before: Optional[datetime] = None,
    expires_after: Optional[datetime] = None,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    query = CouponQuery(
        code=code,
        status=status,
        type=type,
        scope=scope,
        created_by=created_by,
        affiliate_id=affiliate_id,
        user_id=user_id,
        event_id=event_id,
        category=category,
        expires_before=expires_before,
        expires_after=expires_after,
        limit=limit,
        offset=offset,
    )
    coupons, total = coupon_admin.query_coupons(db, query)
    return {"coupons": coupons, "total": total}


@router.post("/bulk-generate", response_model=list[CouponOut], status_code=201)
def bulk_generate(
    payload: BulkGenerateIn,
    db: Session = Depends(get_db),
    actor: str = Depends(get_actor),
    cache: CouponCache = Depends(get_coupon_cache),
):
    try:
        return coupon_admin.bulk_generate(db, payload, actor, cache=cache)
    except CouponError as exc:
        raise _http_error(exc) from exc


@router.post("/expire")
def expire_coupons(
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
    cache: CouponCache = Depends(get_coupon_cache),
):
    expired = coupon_admin.expire_coupons(db, clock=clock, cache=cache)
    return {"expired": expired}


@router.get("/user/{user_id}/history", response_model=list[CouponUsageOut])
def user_history(
    user_id: str,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return coupon_admin.user_history(db, user_id, limit=limit, offset=offset)


@router.get("/{coupon_id}", response_model=CouponOut)
def get_coupon(coupon_id: str, db: Session = Depends(get_db)):
    try:
        return coupon_admin.get_coupon(db, coupon_id)
    except CouponError as exc:
        raise _http_error(exc) from exc


@router.patch("/{coupon_id}", response_model=CouponOut)
def update_coupon(
    coupon_id: str,
    payload: UpdateCouponIn,
    db: Session = Depends(get_db),
    actor: str = Depends(get_actor),
    cache: CouponCache = Depends(get_coupon_cache),
):
    try:
        return coupon_admin.update_coupon(db, coupon_id, payload, actor, cache=cache)
    except CouponError as exc:
        raise _http_error(exc) from exc


@router.delete("/{coupon_id}", status_code=204)
def delete_coupon(
    coupon_id: str,
    db: Session = Depends(get_db),
    actor: str = Depends(get_actor),
    cache: CouponCache = Depends(get_coupon_cache),
):
    try:
        coupon_admin.delete_coupon(db, coupon_id, cache=cache)
    except CouponError as exc:
        raise _http_error(exc) from exc
    logger.info("🗑️ Coupon %s gelöscht von %s", coupon_id, actor)


@router.get("/{coupon_id}/stats", response_model=UsageStatsOut)
def coupon_stats(coupon_id: str, db: Session = Depends(get_db)):
    try:
        return coupon_admin.usage_stats(db, coupon_id)
    except CouponError as exc:
        raise _http_error(exc) from exc
