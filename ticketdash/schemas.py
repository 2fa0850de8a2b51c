"""Request bodies and their declarative constraints.

Each model is the constraint table for one endpoint's JSON body. Field-level
rules (lengths, ranges, enum membership, URL shape) live here; rules that need
the database or the guild's live state live in :mod:`ticketdash.validation`.
"""
from __future__ import annotations
import re
from datetime import datetime
from enum import IntEnum
from typing import Annotated, Literal, Optional, Type, TypeVar
from urllib.parse import urlparse

from flask import request
from pydantic import AfterValidator, AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from .errors import InvalidInput

M = TypeVar("M", bound=BaseModel)


def parse_body(model: Type[M]) -> M:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidInput("Invalid request body")
    return model.model_validate(data)

# ─────────────────────────────────────────────────────────────────────────────
# Field types
# ─────────────────────────────────────────────────────────────────────────────
_PLACEHOLDER = re.compile(r"%[^%\s]+%")
_BLOCKED_DOMAINS = ("discord.com", "discord.gg")


def _http_url(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError("must be a valid http(s) URL")
    return value


def _https_url(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    _http_url(value)
    if not value.startswith("https://"):
        raise ValueError("must start with https://")
    return value


def _webhook_url(value: Optional[str]) -> Optional[str]:
    """http(s) URL that may carry %placeholder% tokens, never pointing at Discord."""
    if value is None:
        return value
    _http_url(_PLACEHOLDER.sub("placeholder", value))
    host = (urlparse(_PLACEHOLDER.sub("placeholder", value)).hostname or "").lower().rstrip(".")
    if any(host == d or host.endswith("." + d) for d in _BLOCKED_DOMAINS):
        raise ValueError("must not point at Discord")
    return value


def _no_percent_or_space(value: str) -> str:
    if "%" in value or " " in value:
        raise ValueError("must not contain '%' or spaces")
    return value


def _no_space(value: str) -> str:
    if " " in value:
        raise ValueError("must not contain spaces")
    return value


Url = Optional[Annotated[str, Field(max_length=255), AfterValidator(_http_url)]]
HttpsUrl = Optional[Annotated[str, Field(max_length=255), AfterValidator(_https_url)]]
WebhookUrl = Annotated[str, Field(max_length=255), AfterValidator(_webhook_url)]
OptionalWebhookUrl = Optional[WebhookUrl]

# ─────────────────────────────────────────────────────────────────────────────
# Embeds
# ─────────────────────────────────────────────────────────────────────────────
class EmbedAuthorBody(BaseModel):
    name: Optional[str] = Field(None, max_length=256)
    icon_url: Url = None
    url: Url = None


class EmbedFooterBody(BaseModel):
    text: Optional[str] = Field(None, max_length=2048)
    icon_url: Url = None


class EmbedFieldBody(BaseModel):
    name: str = Field(min_length=1, max_length=256)
    value: str = Field(min_length=1, max_length=1024)
    inline: bool = False


class CustomEmbedBody(BaseModel):
    title: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = Field(None, max_length=4096)
    url: Url = None
    colour: int = Field(0, ge=0, le=0xFFFFFF)
    author: Optional[EmbedAuthorBody] = None
    image_url: Url = None
    thumbnail_url: Url = None
    footer: Optional[EmbedFooterBody] = None
    timestamp: Optional[datetime] = None
    fields: list[EmbedFieldBody] = Field(default_factory=list, max_length=25)

# ─────────────────────────────────────────────────────────────────────────────
# Panels
# ─────────────────────────────────────────────────────────────────────────────
class EmojiBody(BaseModel):
    name: Optional[str] = Field(None, max_length=32)
    id: Optional[int] = None


class AccessControlRuleBody(BaseModel):
    role_id: int
    action: Literal["allow", "deny"]


class PanelBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    channel_id: int
    message_id: int = 0
    title: str = Field("", max_length=80)
    content: str = Field("", max_length=4096)
    colour: int = Field(0, ge=0, le=0xFFFFFF)
    category_id: Optional[int] = None
    emote: Optional[EmojiBody] = None
    welcome_message: Optional[CustomEmbedBody] = None
    mentions: list[str] = Field(default_factory=list)
    with_default_team: bool = Field(False, validation_alias=AliasChoices("default_team", "with_default_team"))
    teams: list[int] = Field(default_factory=list)
    image_url: Url = None
    thumbnail_url: Url = None
    button_style: int = Field(0, ge=0, le=4)
    button_label: str = Field("", max_length=80)
    form_id: Optional[int] = None
    naming_scheme: Optional[str] = Field(None, max_length=100)
    disabled: bool = False
    exit_survey_form_id: Optional[int] = None
    access_control_list: list[AccessControlRuleBody] = Field(default_factory=list)
    pending_category: Optional[int] = None

    @field_validator("mentions", mode="before")
    @classmethod
    def _mentions_as_str(cls, v):
        if isinstance(v, list):
            return [str(m) for m in v]
        return v


class MultiPanelBody(BaseModel):
    channel_id: int
    select_menu: bool = False
    select_menu_placeholder: Optional[str] = Field(None, max_length=150)
    panels: list[int] = Field(default_factory=list)
    embed: Optional[CustomEmbedBody] = None

# ─────────────────────────────────────────────────────────────────────────────
# Forms
# ─────────────────────────────────────────────────────────────────────────────
class FormBody(BaseModel):
    title: str = Field(min_length=1, max_length=45)


class InputCreateBody(BaseModel):
    label: str = Field(min_length=1, max_length=45)
    placeholder: Optional[str] = Field(None, min_length=1, max_length=100)
    position: int = Field(ge=1, le=5)
    style: int = Field(ge=1, le=2)
    required: bool = False
    min_length: int = Field(0, ge=0, le=1024)
    max_length: int = Field(0, ge=0, le=1024)


class InputUpdateBody(InputCreateBody):
    id: int = Field(ge=1)


class UpdateInputsBody(BaseModel):
    create: list[InputCreateBody] = Field(default_factory=list)
    update: list[InputUpdateBody] = Field(default_factory=list)
    delete: list[int] = Field(default_factory=list)

# ─────────────────────────────────────────────────────────────────────────────
# Integrations
# ─────────────────────────────────────────────────────────────────────────────
class SecretBody(BaseModel):
    id: int = Field(0, ge=0)
    name: Annotated[str, Field(min_length=1, max_length=32), AfterValidator(_no_percent_or_space)]
    description: Optional[str] = Field(None, max_length=255)


class HeaderBody(BaseModel):
    id: int = Field(0, ge=0)
    name: Annotated[str, Field(min_length=1, max_length=32), AfterValidator(_no_space)]
    value: str = Field(min_length=1, max_length=255)


class PlaceholderBody(BaseModel):
    id: int = Field(0, ge=0)
    name: Annotated[str, Field(min_length=1, max_length=32), AfterValidator(_no_percent_or_space)]
    json_path: str = Field(min_length=1, max_length=255)


class IntegrationBody(BaseModel):
    name: str = Field(min_length=1, max_length=32)
    description: str = Field(min_length=1, max_length=255)
    image_url: HttpsUrl = None
    privacy_policy_url: HttpsUrl = None
    http_method: Literal["GET", "POST"]
    webhook_url: WebhookUrl
    validation_url: OptionalWebhookUrl = None
    secrets: list[SecretBody] = Field(default_factory=list, max_length=5)
    headers: list[HeaderBody] = Field(default_factory=list, max_length=5)
    placeholders: list[PlaceholderBody] = Field(default_factory=list, max_length=15)


class ActivateIntegrationBody(BaseModel):
    secrets: dict[int, Annotated[str, Field(min_length=1, max_length=255)]] = Field(default_factory=dict)

# ─────────────────────────────────────────────────────────────────────────────
# Tags, teams, blacklist, misc
# ─────────────────────────────────────────────────────────────────────────────
class TagBody(BaseModel):
    id: str = Field(min_length=1, max_length=16)
    use_guild_command: bool = False
    content: Optional[str] = Field(None, min_length=1, max_length=4096)
    use_embed: bool = False
    embed: Optional[CustomEmbedBody] = None

    @model_validator(mode="before")
    @classmethod
    def _drop_unused_embed(cls, data):
        if isinstance(data, dict) and not data.get("use_embed"):
            data = {**data, "embed": None}
        return data

    @field_validator("id")
    @classmethod
    def _lower(cls, v: str) -> str:
        return v.lower()


class TeamBody(BaseModel):
    name: str = ""


class EntityType(IntEnum):
    USER = 0
    ROLE = 1


class EntityBody(BaseModel):
    entity_type: EntityType
    snowflake: int


class StaffOverrideBody(BaseModel):
    time_period: int = Field(ge=1)


class WhitelabelTokenBody(BaseModel):
    token: Optional[str] = None
