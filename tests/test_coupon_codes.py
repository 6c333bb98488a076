from decimal import Decimal

import pytest
from sqlalchemy import func, select

from models.coupon import Coupon, CouponType
from utils.coupon_codes import MAX_CODE_LENGTH, CodeRegistry, generate_code, normalize_code, to_base36
from utils.coupon_errors import CodeConflict, InvalidCouponInput


def _coupon(code):
    return Coupon(
        code=code,
        name=code,
        type=CouponType.FIXED,
        discount_value=Decimal("5"),
        currency="EUR",
        created_by="admin-1",
    )


def test_normalize_code():
    assert normalize_code("  summer24 ") == "SUMMER24"
    with pytest.raises(InvalidCouponInput):
        normalize_code("   ")
    with pytest.raises(InvalidCouponInput):
        normalize_code("X" * (MAX_CODE_LENGTH + 1))


def test_to_base36():
    assert to_base36(0) == "0"
    assert to_base36(35) == "Z"
    assert to_base36(36) == "10"


def test_generate_code_shape():
    code = generate_code("Black Friday!", 7, now_ms=36 ** 3)

    assert code.startswith("BLACKFRIDAY1000")
    assert code.endswith("7")
    assert len(code) == len("BLACKFRIDAY") + 4 + 6 + 1
    assert code == code.upper()


def test_generate_code_is_truncated():
    assert len(generate_code("P" * 60, 12345)) == MAX_CODE_LENGTH


def test_reserve_normalizes_and_persists(db):
    registry = CodeRegistry()

    registry.reserve(db, _coupon(" spring "))
    db.commit()

    assert not registry.is_available(db, "SPRING")


def test_reserve_rejects_existing_code(db):
    registry = CodeRegistry()
    registry.reserve(db, _coupon("DUP"))
    db.commit()

    with pytest.raises(CodeConflict) as excinfo:
        registry.reserve(db, _coupon("dup"))
    assert excinfo.value.code == "DUP"


def test_unique_index_is_the_authority(db, monkeypatch):
    registry = CodeRegistry()
    registry.reserve(db, _coupon("RACE"))
    db.commit()

    # Vorprüfung übersprungen, wie bei einem parallelen Insert
    monkeypatch.setattr(registry, "is_available", lambda session, code: True)

    with pytest.raises(CodeConflict):
        registry.reserve(db, _coupon("RACE"))

    assert db.scalar(select(func.count()).select_from(Coupon)) == 1


def test_reserve_batch_rejects_duplicates_inside_batch(db):
    with pytest.raises(CodeConflict):
        CodeRegistry().reserve_batch(db, [_coupon("A1"), _coupon("a1")])


def test_reserve_batch_is_all_or_nothing(db):
    registry = CodeRegistry()
    registry.reserve(db, _coupon("TAKEN"))
    db.commit()

    with pytest.raises(CodeConflict):
        registry.reserve_batch(db, [_coupon("FREE1"), _coupon("TAKEN"), _coupon("FREE2")])
    db.rollback()

    assert registry.taken_codes(db, ["FREE1", "FREE2", "TAKEN"]) == {"TAKEN"}
