from __future__ import annotations
import logging

from flask import Blueprint, jsonify

from ..auth import guild_admin_required, guild_support_required
from ..botcontext import BotContext, context_for_guild
from ..embeds import embed_from_body
from ..errors import InvalidInput, NotFound, RestError
from ..models import PremiumGuild, Tag, db, transaction
from ..schemas import TagBody, parse_body
from ..validation import verify_tag_content, verify_tag_id

log = logging.getLogger(__name__)

bp = Blueprint("tags", __name__, url_prefix="/api/<int:guild_id>/tags")

MAX_TAGS = 200


def _delete_command(bot: BotContext, guild_id: int, command_id: int):
    try:
        bot.rest.delete_guild_command(bot.bot_id, guild_id, command_id)
    except RestError as e:
        if not e.is_client_error:
            raise
        log.warning("Guild command %s in guild %s already gone (%s)", command_id, guild_id, e.status_code)


@bp.get("")
@guild_support_required
def list_tags(guild_id: int):
    tags = Tag.query.filter_by(guild_id=guild_id).all()
    return jsonify({t.id: t.to_dict() for t in tags})


@bp.put("")
@guild_admin_required
def create_tag(guild_id: int):
    if Tag.query.filter_by(guild_id=guild_id).count() >= MAX_TAGS:
        raise InvalidInput(f"Tag limit ({MAX_TAGS}) reached")

    data = parse_body(TagBody)

    if not verify_tag_id(data):
        raise InvalidInput("Tag IDs must be alphanumeric (including hyphens and underscores), "
                           "and be between 1 and 16 characters long")

    if not verify_tag_content(data):
        raise InvalidInput("You have not provided any content for the tag")

    bot = context_for_guild(guild_id)

    if data.use_guild_command and PremiumGuild.tier_for(guild_id) < 1:
        raise InvalidInput("Premium is required to use custom commands")

    existing = db.session.get(Tag, (data.id, guild_id))

    command_id = None
    if data.use_guild_command:
        cmd = bot.rest.create_guild_command(bot.bot_id, guild_id, {
            "name": data.id,
            "description": f"Alias for /tag {data.id}",
            "type": 1,
        })
        command_id = int(cmd["id"])
    elif existing is not None and existing.application_command_id:
        _delete_command(bot, guild_id, existing.application_command_id)

    with transaction():
        if existing is None:
            existing = Tag(id=data.id, guild_id=guild_id)
            db.session.add(existing)
        old_embed = existing.embed
        existing.content = data.content
        existing.embed = embed_from_body(guild_id, data.embed) if data.embed else None
        existing.application_command_id = command_id
        if old_embed is not None:
            db.session.flush()
            db.session.delete(old_embed)

    log.info("Saved tag %r in guild %s", data.id, guild_id)
    return "", 204


@bp.delete("/<tag_id>")
@guild_admin_required
def delete_tag(guild_id: int, tag_id: str):
    tag = db.session.get(Tag, (tag_id.lower(), guild_id))
    if tag is None:
        raise NotFound("Tag not found")

    if tag.application_command_id:
        _delete_command(context_for_guild(guild_id), guild_id, tag.application_command_id)

    with transaction():
        embed = tag.embed
        db.session.delete(tag)
        if embed is not None:
            db.session.flush()
            db.session.delete(embed)

    log.info("Deleted tag %r in guild %s", tag_id, guild_id)
    return "", 204
