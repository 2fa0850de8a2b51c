import base64
from types import SimpleNamespace

import pytest
from pydantic import ValidationError

from ticketdash.errors import InvalidInput
from ticketdash.schemas import IntegrationBody, PanelBody, TagBody, UpdateInputsBody
from ticketdash.validation import (
    apply_panel_defaults, are_positions_correct, is_same_validation_url_host, parse_mentions,
    validate_input_update, validate_token, verify_tag_content, verify_tag_id,
)


def _inputs(*ids):
    return [SimpleNamespace(id=i) for i in ids]


def _update_body(create=(), update=(), delete=()):
    return UpdateInputsBody.model_validate({
        "create": [{"label": "Q", "position": p, "style": 1} for p in create],
        "update": [{"id": i, "label": "Q", "position": p, "style": 1} for i, p in update],
        "delete": list(delete),
    })

# ─────────────────────────────────────────────────────────────────────────────
# Form inputs
# ─────────────────────────────────────────────────────────────────────────────
@pytest.mark.parametrize("create,update,ok", [
    ([1, 2], [], True),
    ([3], [(10, 1), (11, 2)], True),
    ([1, 3], [], False),
    ([1, 1], [], False),
    ([2], [], False),
])
def test_positions_must_be_dense_from_one(create, update, ok):
    assert are_positions_correct(_update_body(create, update)) is ok


def test_valid_update_passes():
    body = _update_body(create=[3], update=[(10, 1), (11, 2)], delete=[12])
    validate_input_update(body, _inputs(10, 11, 12))


def test_update_must_cover_every_remaining_input():
    body = _update_body(update=[(10, 1)])
    with pytest.raises(InvalidInput, match="All inputs must be included"):
        validate_input_update(body, _inputs(10, 11))


def test_update_with_duplicate_ids_is_not_complete():
    body = _update_body(update=[(10, 1), (10, 2)])
    with pytest.raises(InvalidInput, match="All inputs must be included"):
        validate_input_update(body, _inputs(10, 11))


def test_delete_and_update_must_be_disjoint():
    body = _update_body(update=[(10, 1)], delete=[10])
    with pytest.raises(InvalidInput, match="Delete and update overlap"):
        validate_input_update(body, _inputs(10))


def test_unknown_update_id():
    body = _update_body(update=[(99, 1)])
    with pytest.raises(InvalidInput, match="to be updated"):
        validate_input_update(body, _inputs(10))


def test_unknown_delete_id():
    body = _update_body(create=[1], delete=[99])
    with pytest.raises(InvalidInput, match="to be deleted"):
        validate_input_update(body, _inputs())


def test_input_count_bounds():
    with pytest.raises(InvalidInput, match="between 1 and 5"):
        validate_input_update(_update_body(), _inputs())
    with pytest.raises(InvalidInput, match="between 1 and 5"):
        validate_input_update(_update_body(create=[1] * 6), _inputs())


def test_gap_in_positions_rejected():
    body = _update_body(create=[2], update=[(10, 1), (11, 4)])
    with pytest.raises(InvalidInput, match="Positions"):
        validate_input_update(body, _inputs(10, 11))

# ─────────────────────────────────────────────────────────────────────────────
# Panels
# ─────────────────────────────────────────────────────────────────────────────
def test_panel_defaults():
    data = PanelBody.model_validate({"channel_id": 1})
    apply_panel_defaults(data)
    assert data.title == "Open a ticket!"
    assert data.content.startswith("By clicking the button")
    assert data.colour == 0x2ECC71
    assert data.button_style == 3
    assert data.button_label == data.title


def test_default_team_alias():
    assert PanelBody.model_validate({"channel_id": 1, "default_team": True}).with_default_team is True
    assert PanelBody.model_validate({"channel_id": 1}).with_default_team is False


def test_mentions_drop_unknown_roles():
    mention_user, roles = parse_mentions(["user", "555", "999", 555], {555})
    assert mention_user is True
    assert roles == [555]


def test_mentions_reject_garbage():
    with pytest.raises(InvalidInput, match="Invalid role ID"):
        parse_mentions(["everyone"], set())

# ─────────────────────────────────────────────────────────────────────────────
# Tags
# ─────────────────────────────────────────────────────────────────────────────
@pytest.mark.parametrize("use_guild_command", [True, False])
def test_tag_id_with_space_rejected(use_guild_command):
    tag = TagBody.model_validate({"id": "a b", "use_guild_command": use_guild_command, "content": "x"})
    assert verify_tag_id(tag) is False


def test_tag_id_lowercased_and_command_checked():
    tag = TagBody.model_validate({"id": "Rules", "use_guild_command": True, "content": "x"})
    assert tag.id == "rules"
    assert verify_tag_id(tag) is True
    tag = TagBody.model_validate({"id": "r!les", "use_guild_command": True, "content": "x"})
    assert verify_tag_id(tag) is False


def test_tag_embed_ignored_without_use_embed():
    tag = TagBody.model_validate({"id": "x", "embed": {"description": "hello"}})
    assert tag.embed is None
    assert verify_tag_content(tag) is False


def test_tag_embed_needs_content():
    tag = TagBody.model_validate({"id": "x", "use_embed": True, "embed": {"title": "only a title"}})
    assert verify_tag_content(tag) is False
    tag = TagBody.model_validate({"id": "x", "use_embed": True, "embed": {"description": "body"}})
    assert verify_tag_content(tag) is True

# ─────────────────────────────────────────────────────────────────────────────
# Integrations + whitelabel
# ─────────────────────────────────────────────────────────────────────────────
def test_validation_url_same_second_level_domain():
    assert is_same_validation_url_host("https://api.example.com/%guild%/hook", "https://example.com/check")
    assert not is_same_validation_url_host("https://api.example.com/hook", "https://example.org/check")


def _integration(**kwargs):
    data = {"name": "n", "description": "d", "http_method": "GET", "webhook_url": "https://example.com/x"}
    data.update(kwargs)
    return IntegrationBody.model_validate(data)


def test_integration_urls():
    _integration(webhook_url="https://example.com/%user_id%")
    with pytest.raises(ValidationError):
        _integration(webhook_url="https://discord.com/api/webhooks/1/abc")
    with pytest.raises(ValidationError):
        _integration(image_url="http://example.com/img.png")
    with pytest.raises(ValidationError):
        _integration(http_method="PUT")


@pytest.mark.parametrize("url", [
    "http://discord.com/api/webhooks/1/abc",
    "https://www.discord.com/api/webhooks/1/abc",
    "https://DISCORD.com/api/webhooks/1/abc",
    "https://ptb.discord.com:443/api/webhooks/1/abc",
    "https://discord.gg/invite",
])
def test_integration_rejects_discord_hosts(url):
    with pytest.raises(ValidationError):
        _integration(webhook_url=url)


def test_integration_allows_lookalike_hosts():
    assert _integration(webhook_url="https://notdiscord.com/x").webhook_url == "https://notdiscord.com/x"
    _integration(webhook_url="https://discord.com.example.org/x")


def test_integration_child_names():
    with pytest.raises(ValidationError):
        _integration(secrets=[{"name": "api key"}])
    with pytest.raises(ValidationError):
        _integration(placeholders=[{"name": "a%b", "json_path": "x"}])
    with pytest.raises(ValidationError):
        _integration(headers=[{"name": f"h{i}", "value": "v"} for i in range(6)])


def _token(bot_id: str, timestamp: bytes) -> str:
    enc = lambda b: base64.urlsafe_b64encode(b).decode().rstrip("=")
    return f"{enc(bot_id.encode())}.{enc(timestamp)}.signature"


def test_validate_token():
    assert validate_token(_token("508391840525975553", b"\x01\x02\x03\x04"))
    assert not validate_token(_token("not-a-number", b"\x01\x02\x03\x04"))
    assert not validate_token(_token("508391840525975553", b"\x01\x02"))
    assert not validate_token("no-dots")
