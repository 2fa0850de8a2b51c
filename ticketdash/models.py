from __future__ import annotations
from contextlib import contextmanager
from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


@contextmanager
def transaction():
    """All-or-nothing unit of work over the shared session."""
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def sid(value) -> str | None:
    """Snowflakes leave the API as strings."""
    return str(value) if value is not None else None

# ─────────────────────────────────────────────────────────────────────────────
# Embeds
# ─────────────────────────────────────────────────────────────────────────────
class Embed(db.Model):
    __tablename__ = "embeds"
    id = db.Column(db.Integer, primary_key=True)
    guild_id = db.Column(db.BigInteger, nullable=False, index=True)
    title = db.Column(db.String(255))
    description = db.Column(db.Text)
    url = db.Column(db.String(255))
    colour = db.Column(db.Integer, default=0)
    author_name = db.Column(db.String(256))
    author_icon_url = db.Column(db.String(255))
    author_url = db.Column(db.String(255))
    image_url = db.Column(db.String(255))
    thumbnail_url = db.Column(db.String(255))
    footer_text = db.Column(db.String(2048))
    footer_icon_url = db.Column(db.String(255))
    timestamp = db.Column(db.DateTime)

    fields = db.relationship("EmbedField", backref="embed", cascade="all, delete-orphan",
                             order_by="EmbedField.position")


class EmbedField(db.Model):
    __tablename__ = "embed_fields"
    id = db.Column(db.Integer, primary_key=True)
    embed_id = db.Column(db.Integer, db.ForeignKey("embeds.id", ondelete="CASCADE"), nullable=False)
    position = db.Column(db.Integer, default=0)
    name = db.Column(db.String(256), nullable=False)
    value = db.Column(db.String(1024), nullable=False)
    inline = db.Column(db.Boolean, default=False)

# ─────────────────────────────────────────────────────────────────────────────
# Panels
# ─────────────────────────────────────────────────────────────────────────────
class Panel(db.Model):
    __tablename__ = "panels"
    panel_id = db.Column(db.Integer, primary_key=True)
    guild_id = db.Column(db.BigInteger, nullable=False, index=True)
    channel_id = db.Column(db.BigInteger, nullable=False)
    message_id = db.Column(db.BigInteger)
    title = db.Column(db.String(80), nullable=False)
    content = db.Column(db.Text, nullable=False)
    colour = db.Column(db.Integer, default=0)
    target_category = db.Column(db.BigInteger)
    emoji_name = db.Column(db.String(32))
    emoji_id = db.Column(db.BigInteger)
    welcome_message_embed = db.Column(db.Integer, db.ForeignKey("embeds.id"))
    with_default_team = db.Column(db.Boolean, default=True)
    custom_id = db.Column(db.String(100), nullable=False)
    image_url = db.Column(db.String(255))
    thumbnail_url = db.Column(db.String(255))
    button_style = db.Column(db.Integer, default=3)
    button_label = db.Column(db.String(80))
    form_id = db.Column(db.Integer, db.ForeignKey("forms.id", ondelete="SET NULL"))
    naming_scheme = db.Column(db.String(100))
    force_disabled = db.Column(db.Boolean, default=False)
    disabled = db.Column(db.Boolean, default=False)
    exit_survey_form_id = db.Column(db.Integer, db.ForeignKey("forms.id", ondelete="SET NULL"))
    pending_category = db.Column(db.BigInteger)

    welcome_message = db.relationship("Embed", foreign_keys=[welcome_message_embed])

    @classmethod
    def get_by_guild(cls, guild_id: int) -> list["Panel"]:
        return cls.query.filter_by(guild_id=guild_id).order_by(cls.panel_id).all()

    def mentions(self) -> list[str]:
        out = []
        if PanelUserMention.query.filter_by(panel_id=self.panel_id, should_mention=True).first():
            out.append("user")
        out.extend(str(m.role_id) for m in PanelRoleMention.query.filter_by(panel_id=self.panel_id).all())
        return out

    def team_ids(self) -> list[int]:
        return [t.team_id for t in PanelTeam.query.filter_by(panel_id=self.panel_id).all()]

    def access_control_list(self) -> list[dict]:
        rules = PanelAccessControlRule.query.filter_by(panel_id=self.panel_id) \
            .order_by(PanelAccessControlRule.position).all()
        return [{"role_id": sid(r.role_id), "action": r.action} for r in rules]

    def to_dict(self) -> dict:
        from .embeds import embed_to_dict
        emote = None
        if self.emoji_name:
            emote = {"name": self.emoji_name, "id": sid(self.emoji_id)}
        return {
            "panel_id": self.panel_id,
            "channel_id": sid(self.channel_id),
            "message_id": sid(self.message_id),
            "title": self.title,
            "content": self.content,
            "colour": self.colour,
            "category_id": sid(self.target_category),
            "emote": emote,
            "welcome_message": embed_to_dict(self.welcome_message) if self.welcome_message else None,
            "with_default_team": bool(self.with_default_team),
            "teams": self.team_ids(),
            "mentions": self.mentions(),
            "image_url": self.image_url,
            "thumbnail_url": self.thumbnail_url,
            "button_style": str(self.button_style),
            "button_label": self.button_label,
            "form_id": self.form_id,
            "naming_scheme": self.naming_scheme,
            "force_disabled": bool(self.force_disabled),
            "disabled": bool(self.disabled),
            "exit_survey_form_id": self.exit_survey_form_id,
            "access_control_list": self.access_control_list(),
            "pending_category": sid(self.pending_category),
        }


class PanelUserMention(db.Model):
    __tablename__ = "panel_user_mentions"
    panel_id = db.Column(db.Integer, db.ForeignKey("panels.panel_id", ondelete="CASCADE"), primary_key=True)
    should_mention = db.Column(db.Boolean, default=False)


class PanelRoleMention(db.Model):
    __tablename__ = "panel_role_mentions"
    panel_id = db.Column(db.Integer, db.ForeignKey("panels.panel_id", ondelete="CASCADE"), primary_key=True)
    role_id = db.Column(db.BigInteger, primary_key=True)


class PanelTeam(db.Model):
    __tablename__ = "panel_teams"
    panel_id = db.Column(db.Integer, db.ForeignKey("panels.panel_id", ondelete="CASCADE"), primary_key=True)
    team_id = db.Column(db.Integer, db.ForeignKey("support_teams.id", ondelete="CASCADE"), primary_key=True)


class PanelAccessControlRule(db.Model):
    __tablename__ = "panel_access_control_rules"
    panel_id = db.Column(db.Integer, db.ForeignKey("panels.panel_id", ondelete="CASCADE"), primary_key=True)
    role_id = db.Column(db.BigInteger, primary_key=True)
    position = db.Column(db.Integer, nullable=False)
    action = db.Column(db.String(10), nullable=False)  # allow / deny


class MultiPanel(db.Model):
    __tablename__ = "multi_panels"
    id = db.Column(db.Integer, primary_key=True)
    guild_id = db.Column(db.BigInteger, nullable=False, index=True)
    channel_id = db.Column(db.BigInteger, nullable=False)
    message_id = db.Column(db.BigInteger)
    select_menu = db.Column(db.Boolean, default=False)
    select_menu_placeholder = db.Column(db.String(150))
    embed_id = db.Column(db.Integer, db.ForeignKey("embeds.id"))

    embed = db.relationship("Embed", foreign_keys=[embed_id])

    def panels(self) -> list[Panel]:
        return Panel.query.join(MultiPanelTarget, MultiPanelTarget.panel_id == Panel.panel_id) \
            .filter(MultiPanelTarget.multi_panel_id == self.id) \
            .order_by(MultiPanelTarget.position).all()

    @classmethod
    def referencing(cls, panel_id: int) -> list["MultiPanel"]:
        return cls.query.join(MultiPanelTarget, MultiPanelTarget.multi_panel_id == cls.id) \
            .filter(MultiPanelTarget.panel_id == panel_id).order_by(cls.id).all()

    def to_dict(self) -> dict:
        from .embeds import embed_to_dict
        return {
            "id": self.id,
            "channel_id": sid(self.channel_id),
            "message_id": sid(self.message_id),
            "select_menu": bool(self.select_menu),
            "select_menu_placeholder": self.select_menu_placeholder,
            "embed": embed_to_dict(self.embed) if self.embed else None,
            "panels": [p.panel_id for p in self.panels()],
        }


class MultiPanelTarget(db.Model):
    __tablename__ = "multi_panel_targets"
    multi_panel_id = db.Column(db.Integer, db.ForeignKey("multi_panels.id", ondelete="CASCADE"), primary_key=True)
    panel_id = db.Column(db.Integer, db.ForeignKey("panels.panel_id", ondelete="CASCADE"), primary_key=True)
    position = db.Column(db.Integer, default=0)

# ─────────────────────────────────────────────────────────────────────────────
# Forms
# ─────────────────────────────────────────────────────────────────────────────
class Form(db.Model):
    __tablename__ = "forms"
    id = db.Column(db.Integer, primary_key=True)
    guild_id = db.Column(db.BigInteger, nullable=False, index=True)
    title = db.Column(db.String(45), nullable=False)
    custom_id = db.Column(db.String(100), nullable=False)

    inputs = db.relationship("FormInput", backref="form", cascade="all, delete-orphan",
                             order_by="FormInput.position")

    def to_dict(self) -> dict:
        return {
            "form_id": self.id,
            "title": self.title,
            "inputs": [i.to_dict() for i in self.inputs],
        }


class FormInput(db.Model):
    __tablename__ = "form_inputs"
    id = db.Column(db.Integer, primary_key=True)
    form_id = db.Column(db.Integer, db.ForeignKey("forms.id", ondelete="CASCADE"), nullable=False)
    position = db.Column(db.Integer, nullable=False)
    custom_id = db.Column(db.String(100), nullable=False)
    style = db.Column(db.Integer, nullable=False)  # 1 short, 2 paragraph
    label = db.Column(db.String(45), nullable=False)
    placeholder = db.Column(db.String(100))
    required = db.Column(db.Boolean, default=True)
    min_length = db.Column(db.Integer)
    max_length = db.Column(db.Integer)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "form_id": self.form_id,
            "position": self.position,
            "style": self.style,
            "label": self.label,
            "placeholder": self.placeholder,
            "required": bool(self.required),
            "min_length": self.min_length,
            "max_length": self.max_length,
        }

# ─────────────────────────────────────────────────────────────────────────────
# Custom integrations
# ─────────────────────────────────────────────────────────────────────────────
class CustomIntegration(db.Model):
    __tablename__ = "custom_integrations"
    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.BigInteger, nullable=False, index=True)
    webhook_url = db.Column(db.String(255), nullable=False)
    validation_url = db.Column(db.String(255))
    http_method = db.Column(db.String(8), nullable=False)
    name = db.Column(db.String(32), nullable=False)
    description = db.Column(db.String(255), nullable=False)
    image_url = db.Column(db.String(255))
    privacy_policy_url = db.Column(db.String(255))
    public = db.Column(db.Boolean, default=False)
    approved = db.Column(db.Boolean, default=False)

    secrets = db.relationship("IntegrationSecret", backref="integration", cascade="all, delete-orphan",
                              order_by="IntegrationSecret.id")
    headers = db.relationship("IntegrationHeader", backref="integration", cascade="all, delete-orphan",
                              order_by="IntegrationHeader.id")
    placeholders = db.relationship("IntegrationPlaceholder", backref="integration", cascade="all, delete-orphan",
                                   order_by="IntegrationPlaceholder.id")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": sid(self.owner_id),
            "webhook_url": self.webhook_url,
            "validation_url": self.validation_url,
            "http_method": self.http_method,
            "name": self.name,
            "description": self.description,
            "image_url": self.image_url,
            "privacy_policy_url": self.privacy_policy_url,
            "public": bool(self.public),
            "approved": bool(self.approved),
        }


class IntegrationSecret(db.Model):
    __tablename__ = "custom_integration_secrets"
    id = db.Column(db.Integer, primary_key=True)
    integration_id = db.Column(db.Integer, db.ForeignKey("custom_integrations.id", ondelete="CASCADE"), nullable=False)
    name = db.Column(db.String(32), nullable=False)
    description = db.Column(db.String(255))

    def to_dict(self) -> dict:
        return {"id": self.id, "integration_id": self.integration_id, "name": self.name,
                "description": self.description}


class IntegrationHeader(db.Model):
    __tablename__ = "custom_integration_headers"
    id = db.Column(db.Integer, primary_key=True)
    integration_id = db.Column(db.Integer, db.ForeignKey("custom_integrations.id", ondelete="CASCADE"), nullable=False)
    name = db.Column(db.String(32), nullable=False)
    value = db.Column(db.String(255), nullable=False)

    def to_dict(self) -> dict:
        return {"id": self.id, "integration_id": self.integration_id, "name": self.name, "value": self.value}


class IntegrationPlaceholder(db.Model):
    __tablename__ = "custom_integration_placeholders"
    id = db.Column(db.Integer, primary_key=True)
    integration_id = db.Column(db.Integer, db.ForeignKey("custom_integrations.id", ondelete="CASCADE"), nullable=False)
    name = db.Column(db.String(32), nullable=False)
    json_path = db.Column(db.String(255), nullable=False)

    def to_dict(self) -> dict:
        return {"id": self.id, "integration_id": self.integration_id, "name": self.name,
                "json_path": self.json_path}


class IntegrationGuild(db.Model):
    __tablename__ = "custom_integration_guilds"
    integration_id = db.Column(db.Integer, db.ForeignKey("custom_integrations.id", ondelete="CASCADE"), primary_key=True)
    guild_id = db.Column(db.BigInteger, primary_key=True)


class IntegrationSecretValue(db.Model):
    __tablename__ = "custom_integration_secret_values"
    secret_id = db.Column(db.Integer, db.ForeignKey("custom_integration_secrets.id", ondelete="CASCADE"), primary_key=True)
    guild_id = db.Column(db.BigInteger, primary_key=True)
    value = db.Column(db.String(255), nullable=False)

# ─────────────────────────────────────────────────────────────────────────────
# Tags, teams, staff
# ─────────────────────────────────────────────────────────────────────────────
class Tag(db.Model):
    __tablename__ = "tags"
    id = db.Column(db.String(32), primary_key=True)
    guild_id = db.Column(db.BigInteger, primary_key=True)
    content = db.Column(db.Text)
    embed_id = db.Column(db.Integer, db.ForeignKey("embeds.id"))
    application_command_id = db.Column(db.BigInteger)

    embed = db.relationship("Embed", foreign_keys=[embed_id])

    def to_dict(self) -> dict:
        from .embeds import embed_to_dict
        return {
            "id": self.id,
            "use_guild_command": self.application_command_id is not None,
            "content": self.content,
            "use_embed": self.embed is not None,
            "embed": embed_to_dict(self.embed) if self.embed else None,
        }


class SupportTeam(db.Model):
    __tablename__ = "support_teams"
    __table_args__ = (db.UniqueConstraint("guild_id", "name"),)
    id = db.Column(db.Integer, primary_key=True)
    guild_id = db.Column(db.BigInteger, nullable=False, index=True)
    name = db.Column(db.String(32), nullable=False)

    members = db.relationship("TeamMember", backref="team", cascade="all, delete-orphan")
    roles = db.relationship("TeamRole", backref="team", cascade="all, delete-orphan")

    def to_dict(self) -> dict:
        return {"id": self.id, "guild_id": sid(self.guild_id), "name": self.name}


class TeamMember(db.Model):
    __tablename__ = "support_team_members"
    team_id = db.Column(db.Integer, db.ForeignKey("support_teams.id", ondelete="CASCADE"), primary_key=True)
    user_id = db.Column(db.BigInteger, primary_key=True)


class TeamRole(db.Model):
    __tablename__ = "support_team_roles"
    team_id = db.Column(db.Integer, db.ForeignKey("support_teams.id", ondelete="CASCADE"), primary_key=True)
    role_id = db.Column(db.BigInteger, primary_key=True)


class GuildAdmin(db.Model):
    __tablename__ = "guild_admins"
    guild_id = db.Column(db.BigInteger, primary_key=True)
    user_id = db.Column(db.BigInteger, primary_key=True)


class GuildAdminRole(db.Model):
    __tablename__ = "guild_admin_roles"
    guild_id = db.Column(db.BigInteger, primary_key=True)
    role_id = db.Column(db.BigInteger, primary_key=True)


class StaffOverride(db.Model):
    __tablename__ = "staff_overrides"
    guild_id = db.Column(db.BigInteger, primary_key=True)
    expires = db.Column(db.DateTime, nullable=False)


class BotStaff(db.Model):
    __tablename__ = "bot_staff"
    user_id = db.Column(db.BigInteger, primary_key=True)


class PremiumGuild(db.Model):
    __tablename__ = "premium_guilds"
    guild_id = db.Column(db.BigInteger, primary_key=True)
    tier = db.Column(db.Integer, default=1)
    expires_at = db.Column(db.DateTime)

    @classmethod
    def tier_for(cls, guild_id: int) -> int:
        """0 when the guild has no current subscription."""
        row = db.session.get(cls, guild_id)
        if row is None or (row.expires_at is not None and row.expires_at <= utcnow()):
            return 0
        return row.tier or 0

# ─────────────────────────────────────────────────────────────────────────────
# Tickets + blacklist
# ─────────────────────────────────────────────────────────────────────────────
class Ticket(db.Model):
    __tablename__ = "tickets"
    id = db.Column(db.Integer, primary_key=True, autoincrement=False)
    guild_id = db.Column(db.BigInteger, primary_key=True)
    user_id = db.Column(db.BigInteger, nullable=False)
    open = db.Column(db.Boolean, default=True)
    panel_id = db.Column(db.Integer)
    claimed_by = db.Column(db.BigInteger)
    open_time = db.Column(db.DateTime, default=utcnow)
    close_time = db.Column(db.DateTime)
    last_message_time = db.Column(db.DateTime)
    last_response_is_staff = db.Column(db.Boolean)


class BlacklistedUser(db.Model):
    __tablename__ = "blacklist"
    guild_id = db.Column(db.BigInteger, primary_key=True)
    user_id = db.Column(db.BigInteger, primary_key=True)


class BlacklistedRole(db.Model):
    __tablename__ = "role_blacklist"
    guild_id = db.Column(db.BigInteger, primary_key=True)
    role_id = db.Column(db.BigInteger, primary_key=True)

# ─────────────────────────────────────────────────────────────────────────────
# Whitelabel + key/value
# ─────────────────────────────────────────────────────────────────────────────
class WhitelabelBot(db.Model):
    __tablename__ = "whitelabel"
    user_id = db.Column(db.BigInteger, primary_key=True)
    bot_id = db.Column(db.BigInteger, nullable=False, unique=True)
    token = db.Column(db.String(100), nullable=False)


class WhitelabelGuild(db.Model):
    __tablename__ = "whitelabel_guilds"
    bot_id = db.Column(db.BigInteger, primary_key=True)
    guild_id = db.Column(db.BigInteger, primary_key=True)


class WhitelabelError(db.Model):
    __tablename__ = "whitelabel_errors"
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.BigInteger, nullable=False, index=True)
    message = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)


class KeyValueEntry(db.Model):
    __tablename__ = "kv_entries"
    key = db.Column(db.String(200), primary_key=True)
    value = db.Column(db.Text)
    expires_at = db.Column(db.DateTime, nullable=False)
