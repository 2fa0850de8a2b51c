from __future__ import annotations

from flask import Blueprint, jsonify

from ..auth import guild_admin_required
from ..botcontext import context_for_guild
from ..models import Panel
from ..panels import create_panel, delete_panel, resend_panel, update_panel
from ..schemas import PanelBody, parse_body

bp = Blueprint("panels", __name__, url_prefix="/api/<int:guild_id>/panels")


@bp.get("")
@guild_admin_required
def list_panels(guild_id: int):
    return jsonify([p.to_dict() for p in Panel.get_by_guild(guild_id)])


@bp.post("")
@guild_admin_required
def panel_create(guild_id: int):
    data = parse_body(PanelBody)
    panel_id = create_panel(context_for_guild(guild_id), guild_id, data)
    return jsonify({"success": True, "panel_id": panel_id})


@bp.patch("/<int:panel_id>")
@guild_admin_required
def panel_update(guild_id: int, panel_id: int):
    data = parse_body(PanelBody)
    panel = update_panel(context_for_guild(guild_id), guild_id, panel_id, data)
    return jsonify({"success": True, "message_id": str(panel.message_id)})


@bp.delete("/<int:panel_id>")
@guild_admin_required
def panel_delete(guild_id: int, panel_id: int):
    delete_panel(context_for_guild(guild_id), guild_id, panel_id)
    return jsonify({"success": True})


@bp.post("/<int:panel_id>")
@guild_admin_required
def panel_resend(guild_id: int, panel_id: int):
    resend_panel(context_for_guild(guild_id), guild_id, panel_id)
    return jsonify({"success": True})
