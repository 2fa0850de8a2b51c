from __future__ import annotations
import os
from pathlib import Path

from dotenv import load_dotenv

# ─────────────────────────────────────────────────────────────────────────────
# Env
# ─────────────────────────────────────────────────────────────────────────────
ROOT = Path(__file__).resolve().parent.parent
load_dotenv(ROOT / ".env")


def _id_set(raw: str) -> set[int]:
    return {int(r.strip()) for r in raw.split(",") if r.strip().isdigit()}


class Config:
    SECRET_KEY = os.environ.get("APP_SECRET_KEY", "dev")
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"

    # DB
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", f"sqlite:///{(ROOT / 'dashboard.db').as_posix()}")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Discord
    DISCORD_API       = os.environ.get("DISCORD_API", "https://discord.com/api/v10")
    DISCORD_BOT_TOKEN = os.environ.get("DISCORD_BOT_TOKEN", "")
    DISCORD_BOT_ID    = int(os.environ.get("DISCORD_BOT_ID", "0") or 0)
    DISCORD_TIMEOUT   = float(os.environ.get("DISCORD_TIMEOUT", "10"))

    # OAuth login
    DISCORD_CLIENT_ID     = os.environ.get("DISCORD_CLIENT_ID", "")
    DISCORD_CLIENT_SECRET = os.environ.get("DISCORD_CLIENT_SECRET", "")
    OAUTH_REDIRECT_URI    = os.environ.get("OAUTH_REDIRECT_URI", "http://localhost:5000/auth/discord/callback")
    DASHBOARD_URL         = os.environ.get("DASHBOARD_URL", "/")

    # Bot admins (full access to every guild + admin endpoints)
    ADMIN_USER_IDS = _id_set(os.environ.get("ADMIN_USER_IDS", ""))

    # Transcript archive + public integration review webhook
    ARCHIVER_URL                     = os.environ.get("ARCHIVER_URL", "")
    PUBLIC_INTEGRATION_WEBHOOK_ID    = os.environ.get("PUBLIC_INTEGRATION_WEBHOOK_ID", "")
    PUBLIC_INTEGRATION_WEBHOOK_TOKEN = os.environ.get("PUBLIC_INTEGRATION_WEBHOOK_TOKEN", "")

    # Caches + fan-out
    ROLE_TTL_SECONDS   = int(os.environ.get("ROLE_TTL_SECONDS", "60"))
    USER_TTL_SECONDS   = int(os.environ.get("USER_TTL_SECONDS", "300"))
    LOOKUP_CONCURRENCY = int(os.environ.get("LOOKUP_CONCURRENCY", "10"))

    # Limits
    FREE_PANEL_LIMIT         = int(os.environ.get("FREE_PANEL_LIMIT", "3"))
    WHITELABEL_COMMAND_DELAY = float(os.environ.get("WHITELABEL_COMMAND_DELAY", "1.0"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
