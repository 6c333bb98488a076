# =============================================================================
# ⚙️ Alembic Environment Configuration (Coupon Engine)
# -----------------------------------------------------------------------------
# Lädt .env-Variablen, nutzt DATABASE_URL und registriert die Coupon-Modelle.
# =============================================================================

import os
from logging.config import fileConfig

from alembic import context
from dotenv import load_dotenv
from sqlalchemy import engine_from_config, pool

# -------------------------------------------------------------------------
# 🔹 .env-Datei laden
# -------------------------------------------------------------------------
load_dotenv()

# -------------------------------------------------------------------------
# 🔹 Alembic-Konfiguration
# -------------------------------------------------------------------------
config = context.config
if config.config_file_name:
    fileConfig(config.config_file_name)

SQLALCHEMY_DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./coupons.db")
config.set_main_option("sqlalchemy.url", SQLALCHEMY_DATABASE_URL.replace("%", "%%"))

# -------------------------------------------------------------------------
# 🔹 Modelle importieren, damit Alembic sie erkennt
# -------------------------------------------------------------------------
from database import Base  # noqa: E402
from models import Coupon, CouponUsage  # noqa: E402,F401

target_metadata = Base.metadata


# -------------------------------------------------------------------------
# 🔹 Migration im Offline-Modus
# -------------------------------------------------------------------------
def run_migrations_offline() -> None:
    """Führt Migrationen im Offline-Modus aus (z. B. in CI/CD)."""
    context.configure(
        url=SQLALCHEMY_DATABASE_URL,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        render_as_batch=SQLALCHEMY_DATABASE_URL.startswith("sqlite"),
    )

    with context.begin_transaction():
        context.run_migrations()


# -------------------------------------------------------------------------
# 🔹 Migration im Online-Modus
# -------------------------------------------------------------------------
def run_migrations_online() -> None:
    section = config.get_section(config.config_ini_section) or {}

    connectable = engine_from_config(
        section,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            render_as_batch=connection.dialect.name == "sqlite",
        )

        with context.begin_transaction():
            context.run_migrations()


# -------------------------------------------------------------------------
# 🔹 Einstiegspunkt
# -------------------------------------------------------------------------
if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
