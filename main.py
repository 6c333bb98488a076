# =============================================================================
# 🚀 Coupon-Engine – Hauptapplikation (main.py)
# =============================================================================

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, List

from dotenv import load_dotenv
from fastapi import FastAPI

# -------------------------------------------------------------------------
# 1️⃣ .env laden (muss ganz oben sein!)
# -------------------------------------------------------------------------
env_path = Path(__file__).resolve().parent / ".env"
load_dotenv(dotenv_path=env_path)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

from database import Base, engine  # noqa: E402
import models  # noqa: E402,F401  registriert alle Tabellen
from routes import coupons  # noqa: E402

# -------------------------------------------------------------------------
# 2️⃣ FastAPI App & Tabellen
# -------------------------------------------------------------------------
app = FastAPI(title="Coupon Engine", version="1.0")

if os.getenv("COUPON_AUTO_CREATE_TABLES", "1") in {"1", "true", "yes"}:
    Base.metadata.create_all(bind=engine)
    logger.info("🧩 Coupon-Tabellen geprüft")

# -------------------------------------------------------------------------
# 3️⃣ Routen
# -------------------------------------------------------------------------
app.include_router(coupons.router)


# -------------------------------------------------------------------------
# 4️⃣ Health & Debug
# -------------------------------------------------------------------------
@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/debug/routes")
def debug_routes() -> List[Dict[str, str]]:
    return [{"path": r.path, "name": r.name} for r in app.routes]
