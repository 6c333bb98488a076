# =============================================================================
# 🗄️ database.py
# -----------------------------------------------------------------------------
# SQLAlchemy-Datenbankkonfiguration für den Coupon-Service
# Unterstützt SQLite + PostgreSQL/MySQL + .env + Alembic-Kompatibilität
# =============================================================================

import os

from dotenv import load_dotenv
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

# 🔹 .env laden (z. B. aus .env-Datei im Projektverzeichnis)
load_dotenv()

SQLALCHEMY_DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./coupons.db")

# Upper bound for waiting on a row/table lock inside a redemption.
LOCK_TIMEOUT_SECONDS = float(os.getenv("COUPON_DB_LOCK_TIMEOUT", "10"))


def build_engine(url: str, lock_timeout: float = LOCK_TIMEOUT_SECONDS, **kwargs) -> Engine:
    """
    Creates an engine whose lock waits are bounded by ``lock_timeout``.

    SQLite gets a busy timeout through the driver, PostgreSQL a
    ``lock_timeout`` on every new connection.
    """
    connect_args = dict(kwargs.pop("connect_args", {}) or {})
    if url.startswith("sqlite"):
        connect_args.setdefault("check_same_thread", False)
        connect_args.setdefault("timeout", lock_timeout)
        return create_engine(url, connect_args=connect_args, **kwargs)

    engine = create_engine(
        url,
        connect_args=connect_args,
        pool_pre_ping=True,
        pool_recycle=280,
        **kwargs,
    )

    if engine.dialect.name == "postgresql":
        @event.listens_for(engine, "connect")
        def _set_lock_timeout(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute(f"SET lock_timeout = {int(lock_timeout * 1000)}")
            cursor.close()

    return engine


# 🔹 Engine erstellen
engine = build_engine(SQLALCHEMY_DATABASE_URL)

# 🔹 SessionFactory – erzeugt Session für jede Anfrage
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
    bind=engine,
)

# 🔹 Basisklasse für alle SQLAlchemy-Modelle
Base = declarative_base()


# 🔹 Dependency für FastAPI
def get_db():
    """
    Erstellt eine neue Datenbank-Session pro Anfrage und schließt sie automatisch.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
