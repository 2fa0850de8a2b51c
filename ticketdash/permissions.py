from __future__ import annotations
from enum import IntEnum

from flask import current_app

from .botcontext import BotContext
from .discord import PERMISSION_ADMINISTRATOR
from .models import (
    BotStaff, GuildAdmin, GuildAdminRole, Panel, PanelTeam, StaffOverride, SupportTeam,
    TeamMember, TeamRole, Ticket, db, utcnow,
)


class PermissionLevel(IntEnum):
    EVERYONE = 0
    SUPPORT = 1
    ADMIN = 2


def _member_role_ids(bot: BotContext, guild_id: int, user_id: int) -> set[int]:
    member = bot.cache.get_member(bot.rest, guild_id, user_id)
    return {int(r) for r in (member or {}).get("roles", [])}


def _has_override(guild_id: int, user_id: int) -> bool:
    override = db.session.get(StaffOverride, guild_id)
    if override is None or override.expires <= utcnow():
        return False
    return db.session.get(BotStaff, user_id) is not None


def get_permission_level(bot: BotContext, guild_id: int, user_id: int) -> PermissionLevel:
    if user_id in current_app.config["ADMIN_USER_IDS"]:
        return PermissionLevel.ADMIN

    if _has_override(guild_id, user_id):
        return PermissionLevel.ADMIN

    if GuildAdmin.query.filter_by(guild_id=guild_id, user_id=user_id).first():
        return PermissionLevel.ADMIN

    guild = bot.cache.get_guild(bot.rest, guild_id)
    if int(guild.get("owner_id") or 0) == user_id:
        return PermissionLevel.ADMIN

    role_ids = _member_role_ids(bot, guild_id, user_id)
    if role_ids:
        if GuildAdminRole.query.filter(GuildAdminRole.guild_id == guild_id,
                                       GuildAdminRole.role_id.in_(role_ids)).first():
            return PermissionLevel.ADMIN

        for role in bot.get_roles(guild_id):
            if int(role["id"]) in role_ids and int(role.get("permissions") or 0) & PERMISSION_ADMINISTRATOR:
                return PermissionLevel.ADMIN

    if team_ids_for(guild_id, user_id, role_ids):
        return PermissionLevel.SUPPORT

    return PermissionLevel.EVERYONE


def team_ids_for(guild_id: int, user_id: int, role_ids: set[int]) -> set[int]:
    """IDs of the guild's support teams the user belongs to, directly or by role."""
    teams = {t.team_id for t in TeamMember.query.join(SupportTeam)
             .filter(SupportTeam.guild_id == guild_id, TeamMember.user_id == user_id).all()}
    if role_ids:
        teams |= {t.team_id for t in TeamRole.query.join(SupportTeam)
                  .filter(SupportTeam.guild_id == guild_id, TeamRole.role_id.in_(role_ids)).all()}
    return teams


def has_permission_to_view_ticket(bot: BotContext, guild_id: int, user_id: int, ticket: Ticket) -> bool:
    level = get_permission_level(bot, guild_id, user_id)
    if level >= PermissionLevel.ADMIN:
        return True
    if level < PermissionLevel.SUPPORT:
        return False

    panel = db.session.get(Panel, ticket.panel_id) if ticket.panel_id is not None else None
    if panel is None or panel.with_default_team:
        return True

    panel_teams = {t.team_id for t in PanelTeam.query.filter_by(panel_id=panel.panel_id).all()}
    member_teams = team_ids_for(guild_id, user_id, _member_role_ids(bot, guild_id, user_id))
    return bool(panel_teams & member_teams)
