from sqlalchemy import inspect, text
from sqlalchemy.pool import NullPool

import models
from database import Base, build_engine


def test_database_connection(tmp_path):
    """Überprüft, ob eine Verbindung zur Datenbank besteht."""
    engine = build_engine(f"sqlite:///{tmp_path / 'check.db'}", poolclass=NullPool)
    with engine.connect() as conn:
        assert conn.execute(text("SELECT 1")).scalar() == 1
    engine.dispose()


def test_required_tables_and_indexes_exist(tmp_path):
    """Prüft Tabellen und Indizes des Coupon-Schemas."""
    engine = build_engine(f"sqlite:///{tmp_path / 'schema.db'}", poolclass=NullPool)
    Base.metadata.create_all(engine)

    insp = inspect(engine)
    assert {"coupons", "coupon_usages"} <= set(insp.get_table_names())

    coupon_indexes = {ix["name"]: ix for ix in insp.get_indexes("coupons")}
    assert coupon_indexes["ix_coupons_code"]["unique"]
    assert coupon_indexes["ix_coupons_status_expires_at"]["column_names"] == ["status", "expires_at"]
    assert coupon_indexes["ix_coupons_created_by_created_at"]["column_names"] == ["created_by", "created_at"]
    assert coupon_indexes["ix_coupons_affiliate_id_status"]["column_names"] == ["affiliate_id", "status"]

    usage_indexes = {ix["name"]: ix["column_names"] for ix in insp.get_indexes("coupon_usages")}
    assert usage_indexes["ix_coupon_usages_coupon_user"] == ["coupon_id", "user_id"]
    assert usage_indexes["ix_coupon_usages_coupon_used_at"] == ["coupon_id", "used_at"]
    assert usage_indexes["ix_coupon_usages_user_used_at"] == ["user_id", "used_at"]
    engine.dispose()


def test_models_map_plain_columns_only():
    """Nutzungen werden per Abfrage gelesen, nie über ORM-Beziehungen."""
    assert not inspect(models.Coupon).relationships
    assert not inspect(models.CouponUsage).relationships
