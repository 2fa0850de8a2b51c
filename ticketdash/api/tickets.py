from __future__ import annotations

from flask import Blueprint, g, jsonify

from ..auth import guild_support_required
from ..botcontext import context_for_guild
from ..models import Panel, Ticket, sid


bp = Blueprint("tickets", __name__, url_prefix="/api/<int:guild_id>/tickets")


def _iso(dt):
    return dt.isoformat() if dt else None


@bp.get("")
@guild_support_required
def list_tickets(guild_id: int):
    tickets = Ticket.query.filter_by(guild_id=guild_id, open=True).order_by(Ticket.id).all()
    panel_titles = {p.panel_id: p.title for p in Panel.get_by_guild(guild_id)}

    user_ids = []
    for t in tickets:
        user_ids.append(t.user_id)
        if t.claimed_by:
            user_ids.append(t.claimed_by)

    bot = context_for_guild(guild_id)
    users = bot.cache.get_users(bot.rest, user_ids)

    return jsonify({
        "tickets": [
            {
                "id": t.id,
                "panel_id": t.panel_id,
                "user_id": sid(t.user_id),
                "claimed_by": sid(t.claimed_by),
                "opened_at": _iso(t.open_time),
                "last_response_time": _iso(t.last_message_time),
                "last_response_is_staff": t.last_response_is_staff,
            }
            for t in tickets
        ],
        "panel_titles": {str(k): v for k, v in panel_titles.items()},
        "resolved_users": {str(k): v for k, v in users.items()},
        "self_id": sid(g.user_id),
    })
