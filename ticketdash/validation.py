"""Imperative cross-field checks.

These run after the body has passed its declarative constraint table
(:mod:`ticketdash.schemas`) and before anything is written. Every check raises
:class:`~ticketdash.errors.InvalidInput` with a message meant for the user.
"""
from __future__ import annotations
import base64
import binascii
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, Optional
from urllib.parse import urlparse

from .discord import CHANNEL_ANNOUNCEMENT, CHANNEL_CATEGORY, CHANNEL_TEXT
from .embeds import embed_has_content
from .errors import InvalidInput
from .models import Form, FormInput, Panel, SupportTeam
from .schemas import MultiPanelBody, PanelBody, TagBody, UpdateInputsBody

# ─────────────────────────────────────────────────────────────────────────────
# Forms
# ─────────────────────────────────────────────────────────────────────────────
MAX_FORM_INPUTS = 5


def are_positions_correct(body: UpdateInputsBody) -> bool:
    """Positions across create+update must be exactly 1..N."""
    positions = sorted([i.position for i in body.create] + [i.position for i in body.update])
    return all(position == i + 1 for i, position in enumerate(positions))


def validate_input_update(body: UpdateInputsBody, existing: Iterable[FormInput]) -> None:
    count = len(body.create) + len(body.update)
    if count <= 0 or count > MAX_FORM_INPUTS:
        raise InvalidInput(f"Forms must have between 1 and {MAX_FORM_INPUTS} inputs")

    existing_ids = [i.id for i in existing]
    update_ids = [i.id for i in body.update]

    if any(i not in existing_ids for i in update_ids):
        raise InvalidInput("Input (to be updated) not found")

    if any(i not in existing_ids for i in body.delete):
        raise InvalidInput("Input (to be deleted) not found")

    if set(body.delete) & set(update_ids):
        raise InvalidInput("Delete and update overlap")

    remaining = [i for i in existing_ids if i not in body.delete]
    if Counter(remaining) != Counter(update_ids):
        raise InvalidInput("All inputs must be included in the update array")

    if not are_positions_correct(body):
        raise InvalidInput("Positions must be unique and in ascending order")

# ─────────────────────────────────────────────────────────────────────────────
# Panels
# ─────────────────────────────────────────────────────────────────────────────
DEFAULT_TITLE = "Open a ticket!"
DEFAULT_CONTENT = "By clicking the button, a ticket will be opened for you."
DEFAULT_COLOUR = 0x2ECC71
BUTTON_STYLE_SUCCESS = 3
MAX_ACL_RULES = 10


def apply_panel_defaults(data: PanelBody) -> None:
    if not data.title:
        data.title = DEFAULT_TITLE
    if not data.content:
        data.content = DEFAULT_CONTENT
    if data.colour == 0:
        data.colour = DEFAULT_COLOUR
    if data.button_style == 0:
        data.button_style = BUTTON_STYLE_SUCCESS
    if not data.button_label:
        data.button_label = data.title


@dataclass
class PanelValidationContext:
    data: PanelBody
    guild_id: int
    channels: list[dict]
    roles: list[dict]
    role_ids: set[int] = field(init=False)

    def __post_init__(self):
        self.role_ids = {int(r["id"]) for r in self.roles}

    def channel_type(self, channel_id: Optional[int]) -> Optional[int]:
        for c in self.channels:
            if int(c["id"]) == channel_id:
                return c.get("type")
        return None


def _validate_form(guild_id: int, form_id: Optional[int], what: str):
    if form_id is None:
        return
    form = Form.query.filter_by(id=form_id).first()
    if form is None or form.guild_id != guild_id:
        raise InvalidInput(f"{what} does not exist")


def validate_panel_body(ctx: PanelValidationContext) -> None:
    data = ctx.data

    if not 1 <= len(data.title) <= 80:
        raise InvalidInput("Panel titles must be between 1 - 80 characters in length")

    if not 1 <= len(data.content) <= 4096:
        raise InvalidInput("Panel content must be between 1 - 4096 characters in length")

    if ctx.channel_type(data.channel_id) not in (CHANNEL_TEXT, CHANNEL_ANNOUNCEMENT):
        raise InvalidInput("Invalid channel")

    if data.category_id is not None and ctx.channel_type(data.category_id) != CHANNEL_CATEGORY:
        raise InvalidInput("Invalid ticket category")

    if data.pending_category is not None and ctx.channel_type(data.pending_category) != CHANNEL_CATEGORY:
        raise InvalidInput("Invalid pending category")

    if data.emote is not None and data.emote.id is None and not data.emote.name:
        raise InvalidInput("Invalid emoji")

    if not 1 <= data.button_style <= 4:
        raise InvalidInput("Invalid button style")

    if not 1 <= len(data.button_label) <= 80:
        raise InvalidInput("Button labels must be between 1 and 80 characters")

    if data.naming_scheme is not None and not 1 <= len(data.naming_scheme) <= 100:
        raise InvalidInput("Naming scheme must be between 1 and 100 characters")

    _validate_form(ctx.guild_id, data.form_id, "Form")
    _validate_form(ctx.guild_id, data.exit_survey_form_id, "Exit survey form")

    if data.teams:
        found = SupportTeam.query.filter(SupportTeam.guild_id == ctx.guild_id,
                                         SupportTeam.id.in_(set(data.teams))).count()
        if found != len(set(data.teams)):
            raise InvalidInput("Invalid support team")

    if data.welcome_message is not None and not (data.welcome_message.title or embed_has_content(data.welcome_message)):
        raise InvalidInput("Welcome message must have a title or content")

    if len(data.access_control_list) > MAX_ACL_RULES:
        raise InvalidInput(f"Access control lists can have at most {MAX_ACL_RULES} rules")

    seen: set[int] = set()
    for rule in data.access_control_list:
        if rule.role_id not in ctx.role_ids:
            raise InvalidInput("Invalid role ID in access control list")
        if rule.role_id in seen:
            raise InvalidInput("Duplicate role ID in access control list")
        seen.add(rule.role_id)


def parse_mentions(mentions: list[str], role_ids: set[int]) -> tuple[bool, list[int]]:
    """``"user"`` flags the opener; role IDs outside the guild are dropped silently."""
    mention_user = False
    roles: list[int] = []
    for mention in mentions:
        if mention == "user":
            mention_user = True
            continue
        try:
            role_id = int(mention)
        except ValueError:
            raise InvalidInput("Invalid role ID")
        if role_id in role_ids and role_id not in roles:
            roles.append(role_id)
    return mention_user, roles

# ─────────────────────────────────────────────────────────────────────────────
# Multi-panels
# ─────────────────────────────────────────────────────────────────────────────
MIN_SUB_PANELS = 2
MAX_SUB_PANELS = 15


def validate_multi_panel(body: MultiPanelBody, guild_id: int, channels: list[dict]) -> list[Panel]:
    if body.embed is None or not (body.embed.title or body.embed.description):
        raise InvalidInput("Embed must have either a title or description")

    types = {int(c["id"]): c.get("type") for c in channels}
    if types.get(body.channel_id) not in (CHANNEL_TEXT, CHANNEL_ANNOUNCEMENT):
        raise InvalidInput("Channel does not exist")

    if len(body.panels) < MIN_SUB_PANELS:
        raise InvalidInput(f"A multi-panel must contain at least {MIN_SUB_PANELS} sub-panels")
    if len(body.panels) > MAX_SUB_PANELS:
        raise InvalidInput(f"Multi-panels cannot contain more than {MAX_SUB_PANELS} sub-panels")
    if len(set(body.panels)) != len(body.panels):
        raise InvalidInput("Duplicate panel ID")

    by_id = {p.panel_id: p for p in Panel.get_by_guild(guild_id)}
    panels = []
    for panel_id in body.panels:
        panel = by_id.get(panel_id)
        if panel is None:
            raise InvalidInput("Invalid panel ID")
        if panel.force_disabled:
            raise InvalidInput("Disabled panels cannot be included in multi-panels")
        panels.append(panel)
    return panels

# ─────────────────────────────────────────────────────────────────────────────
# Tags
# ─────────────────────────────────────────────────────────────────────────────
SLASH_COMMAND_NAME = re.compile(r"^[-_a-zA-Z0-9]{1,32}$")


def verify_tag_id(tag: TagBody) -> bool:
    if not 0 < len(tag.id) <= 16 or " " in tag.id:
        return False
    if tag.use_guild_command:
        return bool(SLASH_COMMAND_NAME.match(tag.id))
    return True


def verify_tag_content(tag: TagBody) -> bool:
    if tag.content is not None:
        return True
    return tag.embed is not None and embed_has_content(tag.embed)

# ─────────────────────────────────────────────────────────────────────────────
# Integrations
# ─────────────────────────────────────────────────────────────────────────────
def url_host(url: str) -> Optional[str]:
    host = urlparse(url.replace("%", "")).hostname
    return host.lower() if host else None


def second_level_domain(host: str) -> str:
    parts = host.split(".")
    return ".".join(parts[-2:]) if len(parts) >= 2 else host


def is_same_validation_url_host(webhook_url: str, validation_url: str) -> bool:
    webhook_host, validation_host = url_host(webhook_url), url_host(validation_url)
    if webhook_host is None or validation_host is None:
        raise InvalidInput("Invalid webhook or validation URL")
    return second_level_domain(webhook_host) == second_level_domain(validation_host)


def verify_child_ids(kind: str, integration_id: int, supplied_ids: Iterable[int], model) -> None:
    """Every non-zero ID must be an existing child row of this integration."""
    ids = {i for i in supplied_ids if i}
    if not ids:
        return
    owned = {row.id for row in model.query.filter(model.id.in_(ids)).all()
             if row.integration_id == integration_id}
    if owned != ids:
        raise InvalidInput(f"Integration ID mismatch for {kind}")

# ─────────────────────────────────────────────────────────────────────────────
# Whitelabel
# ─────────────────────────────────────────────────────────────────────────────
def _b64decode(segment: str) -> bytes:
    return base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4))


def validate_token(token: str) -> bool:
    """Bot token shape: base64(bot id) . base64(4-byte timestamp) . hmac"""
    if token.count(".") != 2:
        return False
    bot_id, timestamp, _ = token.split(".")
    try:
        if not _b64decode(bot_id).decode().isdigit():
            return False
        return len(_b64decode(timestamp)) == 4
    except (binascii.Error, ValueError, UnicodeDecodeError):
        return False
