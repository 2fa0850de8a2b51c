from __future__ import annotations
import logging

from flask import Blueprint, g, jsonify, render_template

from ..archiver import TranscriptNotFound, get_archiver
from ..auth import guild_member_required
from ..botcontext import context_for_guild
from ..errors import Forbidden, InvalidInput, NotFound
from ..models import Ticket, db
from ..permissions import has_permission_to_view_ticket

log = logging.getLogger(__name__)

bp = Blueprint("transcripts", __name__, url_prefix="/api/<int:guild_id>/transcripts")


def _load_transcript(guild_id: int, raw_ticket_id: str) -> tuple[int, dict]:
    try:
        ticket_id = int(raw_ticket_id)
    except ValueError:
        raise InvalidInput("Invalid ticket ID")

    ticket = db.session.get(Ticket, (ticket_id, guild_id))
    if ticket is None or ticket.open:
        raise NotFound("Transcript not found")

    if ticket.user_id != g.user_id:
        if not has_permission_to_view_ticket(context_for_guild(guild_id), guild_id, g.user_id, ticket):
            raise Forbidden("You do not have permission to view this transcript")

    try:
        return ticket_id, get_archiver().get(guild_id, ticket_id)
    except TranscriptNotFound:
        raise NotFound("Transcript not found")


def _author_name(message: dict, users: dict) -> str:
    author = message.get("author") or {}
    if author.get("username"):
        return author["username"]
    user = users.get(str(message.get("author_id") or author.get("id") or ""))
    return (user or {}).get("username") or "Unknown User"


@bp.get("/<ticket_id>")
@guild_member_required
def get_transcript(guild_id: int, ticket_id: str):
    _, transcript = _load_transcript(guild_id, ticket_id)
    return jsonify(transcript)


@bp.get("/<ticket_id>/render")
@guild_member_required
def render_transcript(guild_id: int, ticket_id: str):
    ticket_id, transcript = _load_transcript(guild_id, ticket_id)
    users = (transcript.get("entities") or {}).get("users") or {}

    messages = [
        {
            "author": _author_name(m, users),
            "content": m.get("content") or "",
            "timestamp": m.get("timestamp"),
            "attachments": m.get("attachments") or [],
            "embeds": m.get("embeds") or [],
        }
        for m in transcript.get("messages") or []
    ]
    html = render_template("transcript.html", ticket_id=ticket_id, messages=messages)
    return html, 200, {"Content-Type": "text/html; charset=utf-8"}
