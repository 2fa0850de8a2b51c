from __future__ import annotations

from flask import Blueprint, jsonify

from ..auth import guild_admin_required
from ..botcontext import context_for_guild
from ..models import MultiPanel
from ..panels import create_multi_panel, delete_multi_panel, resend_multi_panel, update_multi_panel
from ..schemas import MultiPanelBody, parse_body

bp = Blueprint("multipanels", __name__, url_prefix="/api/<int:guild_id>/multipanels")


@bp.get("")
@guild_admin_required
def list_multi_panels(guild_id: int):
    rows = MultiPanel.query.filter_by(guild_id=guild_id).order_by(MultiPanel.id).all()
    return jsonify({"success": True, "data": [mp.to_dict() for mp in rows]})


@bp.post("")
@guild_admin_required
def multi_panel_create(guild_id: int):
    body = parse_body(MultiPanelBody)
    mp = create_multi_panel(context_for_guild(guild_id), guild_id, body)
    return jsonify({"success": True, "data": mp.to_dict()})


@bp.patch("/<int:multi_panel_id>")
@guild_admin_required
def multi_panel_update(guild_id: int, multi_panel_id: int):
    body = parse_body(MultiPanelBody)
    mp = update_multi_panel(context_for_guild(guild_id), guild_id, multi_panel_id, body)
    return jsonify({"success": True, "data": mp.to_dict()})


@bp.delete("/<int:multi_panel_id>")
@guild_admin_required
def multi_panel_delete(guild_id: int, multi_panel_id: int):
    delete_multi_panel(context_for_guild(guild_id), guild_id, multi_panel_id)
    return jsonify({"success": True})


@bp.post("/<int:multi_panel_id>")
@guild_admin_required
def multi_panel_resend(guild_id: int, multi_panel_id: int):
    resend_multi_panel(context_for_guild(guild_id), guild_id, multi_panel_id)
    return jsonify({"success": True})
