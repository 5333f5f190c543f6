# services/fortune/config.py
import os
from pathlib import Path

SERVICE_DIR = Path(__file__).parent

ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
PORT = int(os.getenv("PORT", "3000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
ALLOWED_ORIGINS = [o.strip() for o in os.getenv("ALLOWED_ORIGINS", "*").split(",") if o.strip()]
STATIC_DIR = Path(os.getenv("STATIC_DIR", str(SERVICE_DIR / "public")))

# Reverse proxies in front of the app (Render, Railway) append to X-Forwarded-For
TRUST_PROXY_HOPS = int(os.getenv("TRUST_PROXY_HOPS", "1"))

# AI fortune cache
AI_CACHE_TTL_HOURS = float(os.getenv("AI_CACHE_TTL_HOURS", "26"))
AI_CACHE_MAX_ENTRIES = int(os.getenv("AI_CACHE_MAX_ENTRIES", "10000"))
AI_CACHE_SWEEP_SECONDS = int(os.getenv("AI_CACHE_SWEEP_SECONDS", "600"))

# Anonymous identity cookie
USER_COOKIE_NAME = "fcid"
USER_COOKIE_MAX_AGE = 365 * 24 * 3600  # 1 year
