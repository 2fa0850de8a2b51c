from __future__ import annotations
import logging
from typing import Any, Callable, Mapping, Optional

from flask import Flask

from .archiver import ArchiverClient
from .botcontext import RestFactory
from .cache import GuildCache
from .config import Config
from .errors import register_error_handlers
from .kvstore import KeyValueStore
from .models import db

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO"):
    root = logging.getLogger()
    if not any(getattr(h, "_ticketdash", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._ticketdash = True
        root.addHandler(handler)
    root.setLevel(level.upper())
    # urllib3 logs every request at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def create_app(config_override: Optional[Mapping[str, Any]] = None,
               rest_factory: Optional[Callable[[str], Any]] = None) -> Flask:
    app = Flask(__name__, template_folder="templates")
    app.config.from_object(Config)
    if config_override:
        app.config.update(config_override)

    configure_logging(app.config["LOG_LEVEL"])

    db.init_app(app)
    with app.app_context():
        db.create_all()

    cfg = app.config
    app.extensions["ticketdash.rest_factory"] = rest_factory or RestFactory(cfg["DISCORD_API"], cfg["DISCORD_TIMEOUT"])
    app.extensions["ticketdash.cache"] = GuildCache(
        role_ttl=cfg["ROLE_TTL_SECONDS"], user_ttl=cfg["USER_TTL_SECONDS"], concurrency=cfg["LOOKUP_CONCURRENCY"],
    )
    app.extensions["ticketdash.kv"] = KeyValueStore()
    app.extensions["ticketdash.archiver"] = ArchiverClient(cfg["ARCHIVER_URL"], timeout=cfg["DISCORD_TIMEOUT"])

    register_error_handlers(app)

    from .api import register_blueprints
    from .login import bp as login_bp
    app.register_blueprint(login_bp)
    register_blueprints(app)

    @app.get("/healthz")
    def healthz():
        return {"ok": True}

    return app
