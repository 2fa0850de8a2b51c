from __future__ import annotations
import logging

from flask import Blueprint, jsonify, request

from ..auth import guild_admin_required
from ..botcontext import context_for_guild
from ..errors import InvalidInput
from ..models import PanelTeam, SupportTeam, TeamMember, TeamRole, db, sid, transaction
from ..schemas import EntityType, TeamBody, parse_body

log = logging.getLogger(__name__)

bp = Blueprint("teams", __name__, url_prefix="/api/<int:guild_id>/team")


def get_team(guild_id: int, team_id: int) -> SupportTeam:
    team = db.session.get(SupportTeam, team_id)
    if team is None or team.guild_id != guild_id:
        raise InvalidInput("Team not found")
    return team


def _entity_type() -> EntityType:
    try:
        return EntityType(int(request.args.get("type", "")))
    except ValueError:
        raise InvalidInput("Invalid entity type")


@bp.get("")
@guild_admin_required
def list_teams(guild_id: int):
    teams = SupportTeam.query.filter_by(guild_id=guild_id).order_by(SupportTeam.id).all()
    return jsonify([t.to_dict() for t in teams])


@bp.post("")
@guild_admin_required
def create_team(guild_id: int):
    body = parse_body(TeamBody)

    if not 1 <= len(body.name) <= 32:
        raise InvalidInput("Team name must be between 1 and 32 characters")

    if SupportTeam.query.filter_by(guild_id=guild_id, name=body.name).first():
        raise InvalidInput("Team already exists")

    team = SupportTeam(guild_id=guild_id, name=body.name)
    with transaction():
        db.session.add(team)

    log.info("Created team %s (%r) in guild %s", team.id, team.name, guild_id)
    return jsonify(team.to_dict())


@bp.delete("/<int:team_id>")
@guild_admin_required
def delete_team(guild_id: int, team_id: int):
    team = get_team(guild_id, team_id)

    with transaction():
        PanelTeam.query.filter_by(team_id=team.id).delete()
        db.session.delete(team)

    log.info("Deleted team %s in guild %s", team_id, guild_id)
    return jsonify({"success": True})


@bp.get("/<int:team_id>")
@guild_admin_required
def team_members(guild_id: int, team_id: int):
    team = get_team(guild_id, team_id)
    bot = context_for_guild(guild_id)

    user_ids = [m.user_id for m in team.members]
    users = bot.cache.get_users(bot.rest, user_ids)
    role_names = {int(r["id"]): r.get("name") for r in bot.get_roles(guild_id)}

    out = []
    for user_id in user_ids:
        user = users.get(user_id)
        out.append({"id": sid(user_id), "type": int(EntityType.USER),
                    "name": user["username"] if user else "Unknown User"})
    for role in team.roles:
        out.append({"id": sid(role.role_id), "type": int(EntityType.ROLE),
                    "name": role_names.get(role.role_id, "Unknown Role")})
    return jsonify(out)


@bp.put("/<int:team_id>/<int:snowflake>")
@guild_admin_required
def add_member(guild_id: int, team_id: int, snowflake: int):
    entity_type = _entity_type()
    team = get_team(guild_id, team_id)

    with transaction():
        if entity_type == EntityType.USER:
            if db.session.get(TeamMember, (team.id, snowflake)) is None:
                db.session.add(TeamMember(team_id=team.id, user_id=snowflake))
        else:
            if db.session.get(TeamRole, (team.id, snowflake)) is None:
                db.session.add(TeamRole(team_id=team.id, role_id=snowflake))

    return jsonify({"success": True})


@bp.delete("/<int:team_id>/<int:snowflake>")
@guild_admin_required
def remove_member(guild_id: int, team_id: int, snowflake: int):
    entity_type = _entity_type()
    team = get_team(guild_id, team_id)

    with transaction():
        if entity_type == EntityType.USER:
            TeamMember.query.filter_by(team_id=team.id, user_id=snowflake).delete()
        else:
            TeamRole.query.filter_by(team_id=team.id, role_id=snowflake).delete()

    return jsonify({"success": True})
