from __future__ import annotations
import logging
import time
from datetime import timedelta

from flask import Blueprint, current_app, g, jsonify

from ..auth import login_required
from ..botcontext import rest_for
from ..errors import InvalidInput, NotFound, RestError
from ..kvstore import get_kv
from ..models import WhitelabelBot, WhitelabelError, WhitelabelGuild, db, transaction
from ..schemas import WhitelabelTokenBody, parse_body
from ..validation import validate_token

log = logging.getLogger(__name__)

bp = Blueprint("whitelabel", __name__, url_prefix="/api/whitelabel")

INTERACTION_COOLDOWN = timedelta(minutes=15)
RECENT_ERRORS = 10

# Global commands registered on a whitelabel bot
WHITELABEL_COMMANDS = [
    {"name": "open", "description": "Opens a new ticket",
     "options": [{"type": 3, "name": "subject", "description": "The subject of the ticket", "required": False}]},
    {"name": "close", "description": "Closes the current ticket",
     "options": [{"type": 3, "name": "reason", "description": "The reason for closing the ticket", "required": False}]},
    {"name": "add", "description": "Adds a user to a ticket",
     "options": [{"type": 6, "name": "user", "description": "User to add to the ticket", "required": True}]},
    {"name": "remove", "description": "Removes a user from a ticket",
     "options": [{"type": 6, "name": "user", "description": "User to remove from the ticket", "required": True}]},
    {"name": "claim", "description": "Assigns a single staff member to a ticket"},
    {"name": "unclaim", "description": "Removes the claim on the current ticket"},
    {"name": "rename", "description": "Renames the current ticket",
     "options": [{"type": 3, "name": "name", "description": "New name for the ticket", "required": True}]},
    {"name": "tag", "description": "Sends a message snippet",
     "options": [{"type": 3, "name": "id", "description": "The ID of the tag to be sent", "required": True}]},
    {"name": "help", "description": "Shows you a list of commands"},
]


def cooldown_key(bot_id: int) -> str:
    return f"tickets:interaction-create-cooldown:{bot_id}"


def _own_bot() -> WhitelabelBot:
    bot = db.session.get(WhitelabelBot, g.user_id)
    if bot is None:
        raise NotFound("No bot found")
    return bot


@bp.get("")
@login_required
def get_whitelabel():
    bot = _own_bot()
    return jsonify({"success": True, "id": str(bot.bot_id)})


@bp.post("")
@login_required
def set_token():
    body = parse_body(WhitelabelTokenBody)
    token = body.token
    if not token:
        raise InvalidInput("Missing token")

    if not validate_token(token):
        raise InvalidInput("Invalid token")

    try:
        user = rest_for(token).get_current_user()
    except RestError as e:
        raise InvalidInput(str(e))

    if not user.get("bot"):
        raise InvalidInput("Token is not of a bot user")

    bot_id = int(user["id"])
    claimed = WhitelabelBot.query.filter_by(bot_id=bot_id).first()
    if claimed is not None and claimed.user_id != g.user_id:
        raise InvalidInput("This bot is already registered to another user")

    with transaction():
        existing = db.session.get(WhitelabelBot, g.user_id)
        if existing is None:
            db.session.add(WhitelabelBot(user_id=g.user_id, bot_id=bot_id, token=token))
        else:
            if existing.bot_id != bot_id:
                # guilds served by the old bot fall back to the public bot
                WhitelabelGuild.query.filter_by(bot_id=existing.bot_id).delete()
            existing.bot_id = bot_id
            existing.token = token

    log.info("User %s registered whitelabel bot %s", g.user_id, bot_id)
    return jsonify({"success": True, "bot": user})


@bp.post("/create-interactions")
@login_required
def create_interactions():
    bot = _own_bot()
    key = cooldown_key(bot.bot_id)
    kv = get_kv()

    # set first so two concurrent requests cannot both pass
    if not kv.set_if_absent(key, "1", INTERACTION_COOLDOWN):
        remaining = kv.ttl(key) or timedelta(0)
        minutes = int(remaining.total_seconds() // 60)
        raise InvalidInput(f"Interaction creation on cooldown, please wait another {minutes} minutes")

    rest = rest_for(bot.token)
    delay = current_app.config["WHITELABEL_COMMAND_DELAY"]
    for i, cmd in enumerate(WHITELABEL_COMMANDS):
        if i and delay:
            time.sleep(delay)
        rest.create_global_command(bot.bot_id, cmd)

    log.info("Registered %d commands on whitelabel bot %s", len(WHITELABEL_COMMANDS), bot.bot_id)
    return jsonify({"success": True})


@bp.get("/errors")
@login_required
def get_errors():
    rows = WhitelabelError.query.filter_by(user_id=g.user_id) \
        .order_by(WhitelabelError.created_at.desc(), WhitelabelError.id.desc()).limit(RECENT_ERRORS).all()
    return jsonify({
        "success": True,
        "errors": [{"message": r.message, "time": r.created_at.isoformat() if r.created_at else None} for r in rows],
    })
