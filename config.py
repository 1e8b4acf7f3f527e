import os
import sys
import logging

from dotenv import load_dotenv

load_dotenv()

APP_NAME = "Campus Marketplace"

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID", "")
RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET", "")
RAZORPAY_API = "https://api.razorpay.com/v1"

COMMISSION_RATE = float(os.getenv("COMMISSION_RATE", "3"))
CURRENCY = os.getenv("CURRENCY", "INR")

SESSION_TTL_MIN = int(os.getenv("SESSION_TTL_MIN", str(24 * 60)))
ADMIN_EMAILS = [e.strip().lower() for e in os.getenv("ADMIN_EMAILS", "").split(",") if e.strip()]

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = LOG_LEVEL):
    """Attach one stdout handler to the root logger. Safe to call twice."""
    root = logging.getLogger()
    root.setLevel(level)
    if any(getattr(h, "_campus_market", False) for h in root.handlers):
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._campus_market = True
    root.addHandler(handler)
