import itertools
import uuid
from unittest.mock import MagicMock

import pytest

from ticketdash import create_app
from ticketdash.models import MultiPanel, MultiPanelTarget, Panel, db

ADMIN_ID = 1000
USER_ID = 2000
GUILD_ID = 111
OWNER_ID = 1
TEXT_CHANNEL = 123
CATEGORY = 124
VOICE_CHANNEL = 125
ROLE_ID = 555


def make_rest():
    """Stand-in for DiscordRest with a small, consistent guild."""
    rest = MagicMock(name="DiscordRest")
    rest.get_guild.return_value = {"id": str(GUILD_ID), "owner_id": str(OWNER_ID)}
    rest.get_guild_channels.return_value = [
        {"id": str(TEXT_CHANNEL), "type": 0, "name": "tickets"},
        {"id": str(CATEGORY), "type": 4, "name": "Tickets"},
        {"id": str(VOICE_CHANNEL), "type": 2, "name": "voice"},
    ]
    rest.get_guild_roles.return_value = [
        {"id": str(GUILD_ID), "name": "@everyone", "permissions": "0"},
        {"id": str(ROLE_ID), "name": "Support", "permissions": "0"},
    ]
    rest.get_guild_member.return_value = {"roles": []}
    rest.get_guild_emojis.return_value = []
    rest.get_user.side_effect = lambda user_id: {"id": str(user_id), "username": f"user{user_id}"}

    message_ids = itertools.count(9000)
    rest.send_message.side_effect = lambda channel_id, data: {"id": str(next(message_ids))}
    rest.delete_message.return_value = None
    rest.create_guild_command.return_value = {"id": "777"}
    rest.create_global_command.return_value = {"id": "888"}
    return rest


@pytest.fixture
def rest():
    return make_rest()


@pytest.fixture
def app(rest):
    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite://",
            "ADMIN_USER_IDS": {ADMIN_ID},
            "DISCORD_BOT_TOKEN": "public-token",
            "DISCORD_BOT_ID": 42,
            "WHITELABEL_COMMAND_DELAY": 0,
            "ARCHIVER_URL": "http://archiver.test",
            "PUBLIC_INTEGRATION_WEBHOOK_ID": "1",
            "PUBLIC_INTEGRATION_WEBHOOK_TOKEN": "hook-token",
        },
        rest_factory=lambda token: rest,
    )
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


def login(client, user_id):
    with client.session_transaction() as sess:
        sess["discord_user"] = {"id": str(user_id), "username": f"user{user_id}"}
    return client


@pytest.fixture
def client(app):
    """Logged in as a bot admin."""
    return login(app.test_client(), ADMIN_ID)


@pytest.fixture
def user_client(app):
    """Logged in as a guild member with no permissions."""
    return login(app.test_client(), USER_ID)


@pytest.fixture
def anon(app):
    return app.test_client()


def make_panel(guild_id=GUILD_ID, **kwargs) -> int:
    defaults = dict(
        guild_id=guild_id,
        channel_id=TEXT_CHANNEL,
        message_id=500,
        title="Support",
        content="Open a ticket",
        colour=0,
        custom_id=uuid.uuid4().hex,
        button_style=3,
        button_label="Open",
        with_default_team=True,
    )
    defaults.update(kwargs)
    panel = Panel(**defaults)
    db.session.add(panel)
    db.session.commit()
    return panel.panel_id


def make_multi_panel(panel_ids, guild_id=GUILD_ID, message_id=600) -> int:
    mp = MultiPanel(guild_id=guild_id, channel_id=TEXT_CHANNEL, message_id=message_id, select_menu=False)
    db.session.add(mp)
    db.session.flush()
    for i, panel_id in enumerate(panel_ids):
        db.session.add(MultiPanelTarget(multi_panel_id=mp.id, panel_id=panel_id, position=i))
    db.session.commit()
    return mp.id
