"""Panel synchronisation.

A panel lives in two places: a row (plus side tables) in the database and a
message in a guild channel. Nothing here is transactional across the two.
Create sends first and persists second, so a failed send never leaves a row
behind; update and delete remove the old message before sending the new one,
so two live copies never exist. A crash between those steps leaves the stored
message ID stale until the panel is resent.
"""
from __future__ import annotations
import logging
import secrets
import string
from dataclasses import dataclass
from typing import Callable, Optional

import requests
from flask import current_app

from .botcontext import BotContext
from .embeds import embed_from_body, embed_payload
from .errors import Forbidden, InvalidInput, NotFound, RestError
from .models import (
    Embed, MultiPanel, MultiPanelTarget, Panel, PanelAccessControlRule, PanelRoleMention, PanelTeam,
    PanelUserMention, PremiumGuild, db, transaction,
)
from .schemas import MultiPanelBody, PanelBody
from .validation import (
    PanelValidationContext, apply_panel_defaults, parse_mentions, validate_multi_panel, validate_panel_body,
)

log = logging.getLogger(__name__)

# Multi-panels regenerated per panel update/delete
MAX_MULTI_PANEL_UPDATES = 5

NO_SEND_PERMISSION = "I do not have permission to send messages in the provided channel"

_ALPHABET = string.ascii_letters + string.digits


def random_custom_id(length: int = 30) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))

# ─────────────────────────────────────────────────────────────────────────────
# Remote message helpers
# ─────────────────────────────────────────────────────────────────────────────
def gone(e: RestError) -> bool:
    return e.status_code in (403, 404)


def not_found(e: RestError) -> bool:
    return e.status_code == 404


def client_error(e: RestError) -> bool:
    return e.is_client_error


def delete_remote_message(bot: BotContext, channel_id: int, message_id: Optional[int],
                          tolerate: Callable[[RestError], bool] = gone) -> None:
    if not message_id:
        return
    try:
        bot.rest.delete_message(channel_id, message_id)
    except RestError as e:
        if not tolerate(e):
            raise
        log.warning("Message %s in channel %s already gone (%s)", message_id, channel_id, e.status_code)


def _send(send: Callable[[], int]) -> int:
    try:
        return send()
    except RestError as e:
        if e.status_code == 403:
            raise InvalidInput(NO_SEND_PERMISSION)
        raise


def _emoji(name: Optional[str], emoji_id: Optional[int]) -> Optional[dict]:
    if not name and not emoji_id:
        return None
    out: dict = {"name": name}
    if emoji_id:
        out["id"] = str(emoji_id)
    return out

# ─────────────────────────────────────────────────────────────────────────────
# Message rendering
# ─────────────────────────────────────────────────────────────────────────────
@dataclass
class PanelMessageData:
    channel_id: int
    title: str
    content: str
    custom_id: str
    colour: int
    image_url: Optional[str]
    thumbnail_url: Optional[str]
    emoji: Optional[dict]
    button_style: int
    button_label: str
    button_disabled: bool

    @classmethod
    def from_body(cls, data: PanelBody, custom_id: str, force_disabled: bool = False) -> "PanelMessageData":
        emote = data.emote
        return cls(
            channel_id=data.channel_id, title=data.title, content=data.content, custom_id=custom_id,
            colour=data.colour, image_url=data.image_url, thumbnail_url=data.thumbnail_url,
            emoji=_emoji(emote.name, emote.id) if emote else None,
            button_style=data.button_style, button_label=data.button_label,
            button_disabled=bool(data.disabled or force_disabled),
        )

    @classmethod
    def from_panel(cls, panel: Panel) -> "PanelMessageData":
        return cls(
            channel_id=panel.channel_id, title=panel.title, content=panel.content, custom_id=panel.custom_id,
            colour=panel.colour or 0, image_url=panel.image_url, thumbnail_url=panel.thumbnail_url,
            emoji=_emoji(panel.emoji_name, panel.emoji_id),
            button_style=panel.button_style, button_label=panel.button_label or panel.title,
            button_disabled=bool(panel.disabled or panel.force_disabled),
        )

    def payload(self) -> dict:
        embed: dict = {"title": self.title, "description": self.content, "color": self.colour}
        if self.image_url:
            embed["image"] = {"url": self.image_url}
        if self.thumbnail_url:
            embed["thumbnail"] = {"url": self.thumbnail_url}

        button: dict = {
            "type": 2,
            "style": self.button_style,
            "label": self.button_label,
            "custom_id": self.custom_id,
            "disabled": self.button_disabled,
        }
        if self.emoji:
            button["emoji"] = self.emoji
        return {"embeds": [embed], "components": [{"type": 1, "components": [button]}]}

    def send(self, bot: BotContext) -> int:
        msg = bot.rest.send_message(self.channel_id, self.payload())
        return int(msg["id"])


def panel_button(panel: Panel) -> dict:
    button = {
        "type": 2,
        "style": panel.button_style,
        "label": panel.button_label or panel.title,
        "custom_id": panel.custom_id,
        "disabled": bool(panel.disabled or panel.force_disabled),
    }
    emoji = _emoji(panel.emoji_name, panel.emoji_id)
    if emoji:
        button["emoji"] = emoji
    return button


@dataclass
class MultiPanelMessageData:
    channel_id: int
    select_menu: bool
    select_menu_placeholder: Optional[str]
    embed: Optional[dict]

    @classmethod
    def from_multi_panel(cls, mp: MultiPanel) -> "MultiPanelMessageData":
        return cls(mp.channel_id, bool(mp.select_menu), mp.select_menu_placeholder, embed_payload(mp.embed))

    @classmethod
    def from_body(cls, guild_id: int, body: MultiPanelBody) -> "MultiPanelMessageData":
        embed = embed_payload(embed_from_body(guild_id, body.embed)) if body.embed else None
        return cls(body.channel_id, body.select_menu, body.select_menu_placeholder, embed)

    def payload(self, panels: list[Panel]) -> dict:
        if self.select_menu:
            options = []
            for panel in panels:
                option = {"label": panel.title, "value": panel.custom_id}
                emoji = _emoji(panel.emoji_name, panel.emoji_id)
                if emoji:
                    option["emoji"] = emoji
                options.append(option)
            menu = {
                "type": 3,
                "custom_id": "multipanel",
                "options": options,
                "placeholder": self.select_menu_placeholder or "Select a topic...",
                "min_values": 1,
                "max_values": 1,
            }
            rows = [{"type": 1, "components": [menu]}]
        else:
            buttons = [panel_button(p) for p in panels]
            rows = [{"type": 1, "components": buttons[i:i + 5]} for i in range(0, len(buttons), 5)]

        out: dict = {"components": rows}
        if self.embed:
            out["embeds"] = [self.embed]
        return out

    def send(self, bot: BotContext, panels: list[Panel]) -> int:
        msg = bot.rest.send_message(self.channel_id, self.payload(panels))
        return int(msg["id"])

# ─────────────────────────────────────────────────────────────────────────────
# Lookups
# ─────────────────────────────────────────────────────────────────────────────
def get_panel(guild_id: int, panel_id: int) -> Panel:
    panel = db.session.get(Panel, panel_id)
    if panel is None:
        raise NotFound("Panel not found")
    if panel.guild_id != guild_id:
        raise Forbidden("Guild ID doesn't match")
    return panel


def get_multi_panel(guild_id: int, multi_panel_id: int) -> MultiPanel:
    mp = db.session.get(MultiPanel, multi_panel_id)
    if mp is None:
        raise NotFound("No panel with the provided ID found")
    if mp.guild_id != guild_id:
        raise Forbidden("Guild ID doesn't match")
    return mp


def _check_quota(guild_id: int):
    if PremiumGuild.tier_for(guild_id) > 0:
        return
    limit = current_app.config["FREE_PANEL_LIMIT"]
    if Panel.query.filter_by(guild_id=guild_id).count() >= limit:
        raise InvalidInput("You have exceeded your panel quota. Purchase premium to unlock more panels.")


def _validate(bot: BotContext, guild_id: int, data: PanelBody) -> tuple[bool, list[int]]:
    apply_panel_defaults(data)
    ctx = PanelValidationContext(
        data=data, guild_id=guild_id, channels=bot.get_channels(guild_id), roles=bot.get_roles(guild_id),
    )
    validate_panel_body(ctx)
    return parse_mentions(data.mentions, ctx.role_ids)


def _replace_side_tables(panel_id: int, data: PanelBody, mention_user: bool, role_mentions: list[int]):
    for model in (PanelUserMention, PanelRoleMention, PanelTeam, PanelAccessControlRule):
        model.query.filter_by(panel_id=panel_id).delete()

    db.session.add(PanelUserMention(panel_id=panel_id, should_mention=mention_user))
    db.session.add_all(PanelRoleMention(panel_id=panel_id, role_id=r) for r in role_mentions)
    db.session.add_all(PanelTeam(panel_id=panel_id, team_id=t) for t in dict.fromkeys(data.teams))
    db.session.add_all(
        PanelAccessControlRule(panel_id=panel_id, role_id=rule.role_id, position=i, action=rule.action)
        for i, rule in enumerate(data.access_control_list)
    )


def _apply_body(panel: Panel, data: PanelBody):
    emote = data.emote
    panel.channel_id = data.channel_id
    panel.title = data.title
    panel.content = data.content
    panel.colour = data.colour
    panel.target_category = data.category_id
    panel.emoji_name = emote.name if emote else None
    panel.emoji_id = emote.id if emote else None
    panel.with_default_team = data.with_default_team
    panel.image_url = data.image_url
    panel.thumbnail_url = data.thumbnail_url
    panel.button_style = data.button_style
    panel.button_label = data.button_label
    panel.form_id = data.form_id
    panel.naming_scheme = data.naming_scheme
    panel.disabled = data.disabled
    panel.exit_survey_form_id = data.exit_survey_form_id
    panel.pending_category = data.pending_category

# ─────────────────────────────────────────────────────────────────────────────
# Panels
# ─────────────────────────────────────────────────────────────────────────────
def create_panel(bot: BotContext, guild_id: int, data: PanelBody) -> int:
    data.message_id = 0
    _check_quota(guild_id)
    mention_user, role_mentions = _validate(bot, guild_id, data)

    # welcome message is stored before the panel so the row can reference it
    welcome: Optional[Embed] = None
    if data.welcome_message is not None:
        welcome = embed_from_body(guild_id, data.welcome_message)
        with transaction():
            db.session.add(welcome)

    custom_id = random_custom_id()
    try:
        message_id = _send(lambda: PanelMessageData.from_body(data, custom_id).send(bot))
    except Exception:
        if welcome is not None:
            with transaction():
                db.session.delete(welcome)
        raise

    panel = Panel(guild_id=guild_id, message_id=message_id, custom_id=custom_id, force_disabled=False,
                  welcome_message=welcome)
    _apply_body(panel, data)

    # a failure here leaves the sent message orphaned in the channel
    with transaction():
        db.session.add(panel)
        db.session.flush()
        _replace_side_tables(panel.panel_id, data, mention_user, role_mentions)

    log.info("Created panel %s in guild %s (message %s)", panel.panel_id, guild_id, message_id)
    return panel.panel_id


def update_panel(bot: BotContext, guild_id: int, panel_id: int, data: PanelBody) -> Panel:
    panel = get_panel(guild_id, panel_id)
    mention_user, role_mentions = _validate(bot, guild_id, data)

    delete_remote_message(bot, panel.channel_id, panel.message_id, tolerate=gone)
    message_id = _send(lambda: PanelMessageData.from_body(data, panel.custom_id, panel.force_disabled).send(bot))

    with transaction():
        old_welcome = panel.welcome_message
        if data.welcome_message is not None:
            welcome = embed_from_body(guild_id, data.welcome_message)
            db.session.add(welcome)
            db.session.flush()
            panel.welcome_message = welcome
        else:
            panel.welcome_message = None
        if old_welcome is not None:
            db.session.flush()
            db.session.delete(old_welcome)

        _apply_body(panel, data)
        panel.message_id = message_id
        _replace_side_tables(panel.panel_id, data, mention_user, role_mentions)

    log.info("Updated panel %s in guild %s (message %s)", panel.panel_id, guild_id, message_id)
    propagate_to_multi_panels(bot, MultiPanel.referencing(panel.panel_id))
    return panel


def delete_panel(bot: BotContext, guild_id: int, panel_id: int) -> None:
    panel = get_panel(guild_id, panel_id)
    multi_panels = MultiPanel.referencing(panel_id)
    channel_id, message_id = panel.channel_id, panel.message_id

    with transaction():
        for model in (PanelUserMention, PanelRoleMention, PanelTeam, PanelAccessControlRule, MultiPanelTarget):
            model.query.filter_by(panel_id=panel_id).delete()
        welcome = panel.welcome_message
        db.session.delete(panel)
        if welcome is not None:
            db.session.flush()
            db.session.delete(welcome)

    delete_remote_message(bot, channel_id, message_id, tolerate=not_found)
    log.info("Deleted panel %s in guild %s", panel_id, guild_id)

    propagate_to_multi_panels(bot, multi_panels)


def resend_panel(bot: BotContext, guild_id: int, panel_id: int) -> None:
    panel = get_panel(guild_id, panel_id)

    delete_remote_message(bot, panel.channel_id, panel.message_id, tolerate=client_error)
    message_id = _send(lambda: PanelMessageData.from_panel(panel).send(bot))

    with transaction():
        panel.message_id = message_id

# ─────────────────────────────────────────────────────────────────────────────
# Multi-panels
# ─────────────────────────────────────────────────────────────────────────────
def regenerate_multi_panel(bot: BotContext, mp: MultiPanel) -> None:
    """Send a fresh copy of the multi-panel, then retire the old message."""
    old_message_id = mp.message_id
    message_id = MultiPanelMessageData.from_multi_panel(mp).send(bot, mp.panels())

    with transaction():
        mp.message_id = message_id

    try:
        delete_remote_message(bot, mp.channel_id, old_message_id, tolerate=client_error)
    except RestError as e:
        log.warning("Could not remove old message of multi-panel %s: %s", mp.id, e)


def propagate_to_multi_panels(bot: BotContext, multi_panels: list[MultiPanel]) -> int:
    """Regenerate up to MAX_MULTI_PANEL_UPDATES multi-panels; returns how many were attempted.

    A failure only abandons that multi-panel.
    """
    attempted = 0
    for mp in multi_panels[:MAX_MULTI_PANEL_UPDATES]:
        attempted += 1
        try:
            regenerate_multi_panel(bot, mp)
        except RestError as e:
            if e.is_client_error:
                log.warning("Skipped multi-panel %s: %s", mp.id, e)
            else:
                log.error("Failed to regenerate multi-panel %s: %s", mp.id, e)
        except requests.RequestException as e:
            log.error("Failed to regenerate multi-panel %s: %s", mp.id, e)
    return attempted


def _replace_targets(mp: MultiPanel, panels: list[Panel]):
    MultiPanelTarget.query.filter_by(multi_panel_id=mp.id).delete()
    db.session.add_all(
        MultiPanelTarget(multi_panel_id=mp.id, panel_id=p.panel_id, position=i) for i, p in enumerate(panels)
    )


def create_multi_panel(bot: BotContext, guild_id: int, body: MultiPanelBody) -> MultiPanel:
    panels = validate_multi_panel(body, guild_id, bot.get_channels(guild_id))
    message_id = _send(lambda: MultiPanelMessageData.from_body(guild_id, body).send(bot, panels))

    with transaction():
        embed = embed_from_body(guild_id, body.embed)
        db.session.add(embed)
        db.session.flush()
        mp = MultiPanel(guild_id=guild_id, channel_id=body.channel_id, message_id=message_id,
                        select_menu=body.select_menu, select_menu_placeholder=body.select_menu_placeholder,
                        embed_id=embed.id)
        db.session.add(mp)
        db.session.flush()
        _replace_targets(mp, panels)

    log.info("Created multi-panel %s in guild %s", mp.id, guild_id)
    return mp


def update_multi_panel(bot: BotContext, guild_id: int, multi_panel_id: int, body: MultiPanelBody) -> MultiPanel:
    mp = get_multi_panel(guild_id, multi_panel_id)
    panels = validate_multi_panel(body, guild_id, bot.get_channels(guild_id))

    delete_remote_message(bot, mp.channel_id, mp.message_id, tolerate=client_error)
    message_id = _send(lambda: MultiPanelMessageData.from_body(guild_id, body).send(bot, panels))

    with transaction():
        old_embed = mp.embed
        embed = embed_from_body(guild_id, body.embed)
        db.session.add(embed)
        db.session.flush()
        mp.embed = embed
        mp.message_id = message_id
        mp.channel_id = body.channel_id
        mp.select_menu = body.select_menu
        mp.select_menu_placeholder = body.select_menu_placeholder
        if old_embed is not None:
            db.session.flush()
            db.session.delete(old_embed)
        _replace_targets(mp, panels)

    log.info("Updated multi-panel %s in guild %s", mp.id, guild_id)
    return mp


def delete_multi_panel(bot: BotContext, guild_id: int, multi_panel_id: int) -> None:
    mp = get_multi_panel(guild_id, multi_panel_id)
    delete_remote_message(bot, mp.channel_id, mp.message_id, tolerate=gone)

    with transaction():
        deleted = MultiPanel.query.filter_by(id=multi_panel_id, guild_id=guild_id).first()
        if deleted is None:
            raise NotFound("No panel with matching ID found")
        MultiPanelTarget.query.filter_by(multi_panel_id=multi_panel_id).delete()
        embed = deleted.embed
        db.session.delete(deleted)
        if embed is not None:
            db.session.flush()
            db.session.delete(embed)

    log.info("Deleted multi-panel %s in guild %s", multi_panel_id, guild_id)


def resend_multi_panel(bot: BotContext, guild_id: int, multi_panel_id: int) -> None:
    mp = get_multi_panel(guild_id, multi_panel_id)

    delete_remote_message(bot, mp.channel_id, mp.message_id, tolerate=client_error)
    message_id = _send(lambda: MultiPanelMessageData.from_multi_panel(mp).send(bot, mp.panels()))

    with transaction():
        mp.message_id = message_id
