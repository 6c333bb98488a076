#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Script: expire_coupons.py
Project: Coupon Engine
Description:
    Markiert alle aktiven Coupons, deren Ablaufdatum überschritten ist, als
    'expired' und entfernt sie aus dem Cache. Gedacht für Cron / Scheduler.
"""

import logging
import os
import sys

# ─────────────────────────────────────────────
# 🧩 Projektpfad einbinden
# ─────────────────────────────────────────────
BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.append(BASE_DIR)

# ─────────────────────────────────────────────
# 📦 Interne Importe
# ─────────────────────────────────────────────
from database import SessionLocal  # noqa: E402
from utils.coupon_admin import expire_coupons  # noqa: E402
from utils.coupon_cache import build_coupon_cache  # noqa: E402

logger = logging.getLogger("expire_coupons")


def main() -> int:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="[%(asctime)s] [%(levelname)s] %(message)s",
    )
    logger.info("🚀 Starte Ablauf-Sweep für Coupons ...")

    db = SessionLocal()
    try:
        expired = expire_coupons(db, cache=build_coupon_cache())
    except Exception:
        db.rollback()
        logger.exception("❌ Ablauf-Sweep fehlgeschlagen")
        return 1
    finally:
        db.close()

    logger.info("✅ %s Coupons als abgelaufen markiert", expired)
    return 0


if __name__ == "__main__":
    sys.exit(main())
