from __future__ import annotations
import logging

from flask import Blueprint, jsonify, request

from ..auth import guild_support_required
from ..botcontext import context_for_guild
from ..errors import InvalidInput
from ..models import BlacklistedRole, BlacklistedUser, db, sid, transaction
from ..permissions import PermissionLevel, get_permission_level
from ..schemas import EntityBody, EntityType, parse_body

log = logging.getLogger(__name__)

bp = Blueprint("blacklist", __name__, url_prefix="/api/<int:guild_id>/blacklist")

PAGE_LIMIT = 30


def _page() -> int:
    try:
        page = int(request.args.get("page", "1"))
    except ValueError:
        return 1
    return page if page >= 1 else 1


@bp.get("")
@guild_support_required
def get_blacklist(guild_id: int):
    page = _page()
    rows = BlacklistedUser.query.filter_by(guild_id=guild_id).order_by(BlacklistedUser.user_id) \
        .limit(PAGE_LIMIT).offset(PAGE_LIMIT * (page - 1)).all()
    user_ids = [r.user_id for r in rows]

    bot = context_for_guild(guild_id)
    resolved = bot.cache.get_users(bot.rest, user_ids)

    users = []
    for user_id in user_ids:
        user = resolved.get(user_id)
        users.append({"id": sid(user_id), "username": user["username"] if user else None})

    roles = [sid(r.role_id) for r in BlacklistedRole.query.filter_by(guild_id=guild_id)
             .order_by(BlacklistedRole.role_id).all()]

    return jsonify({"page_limit": PAGE_LIMIT, "users": users, "roles": roles})


@bp.post("")
@guild_support_required
def add_blacklist(guild_id: int):
    body = parse_body(EntityBody)
    bot = context_for_guild(guild_id)

    if body.entity_type == EntityType.USER:
        if get_permission_level(bot, guild_id, body.snowflake) > PermissionLevel.EVERYONE:
            raise InvalidInput("You cannot blacklist staff members")
    elif body.snowflake not in {int(r["id"]) for r in bot.get_roles(guild_id)}:
        raise InvalidInput("Invalid role")

    with transaction():
        if body.entity_type == EntityType.USER:
            if db.session.get(BlacklistedUser, (guild_id, body.snowflake)) is None:
                db.session.add(BlacklistedUser(guild_id=guild_id, user_id=body.snowflake))
        else:
            if db.session.get(BlacklistedRole, (guild_id, body.snowflake)) is None:
                db.session.add(BlacklistedRole(guild_id=guild_id, role_id=body.snowflake))

    log.info("Blacklisted %s %s in guild %s", body.entity_type.name.lower(), body.snowflake, guild_id)
    return jsonify({"success": True, "resolved": True, "id": sid(body.snowflake)})


@bp.delete("/user/<int:user_id>")
@guild_support_required
def remove_user(guild_id: int, user_id: int):
    with transaction():
        BlacklistedUser.query.filter_by(guild_id=guild_id, user_id=user_id).delete()
    return "", 204


@bp.delete("/role/<int:role_id>")
@guild_support_required
def remove_role(guild_id: int, role_id: int):
    with transaction():
        BlacklistedRole.query.filter_by(guild_id=guild_id, role_id=role_id).delete()
    return "", 204
