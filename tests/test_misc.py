import base64
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from conftest import ADMIN_ID, GUILD_ID, OWNER_ID, ROLE_ID, USER_ID, login, make_panel
from ticketdash.archiver import TranscriptNotFound
from ticketdash.errors import RestError
from ticketdash.models import (
    BlacklistedRole, BlacklistedUser, BotStaff, PanelTeam, StaffOverride, SupportTeam, TeamMember, Ticket,
    WhitelabelBot, WhitelabelError, WhitelabelGuild, db, utcnow,
)

# ─────────────────────────────────────────────────────────────────────────────
# Auth
# ─────────────────────────────────────────────────────────────────────────────
def test_anonymous_requests_are_rejected(anon):
    r = anon.get(f"/api/{GUILD_ID}/panels")
    assert r.status_code == 401
    assert r.get_json() == {"success": False, "error": "Unauthorized"}


def test_members_cannot_manage_guild(user_client):
    r = user_client.get(f"/api/{GUILD_ID}/panels")
    assert r.status_code == 403


def test_guild_owner_is_admin(app):
    owner = login(app.test_client(), OWNER_ID)
    assert owner.get(f"/api/{GUILD_ID}/roles").status_code == 200


def test_staff_override_grants_bot_staff_admin(client, user_client, app):
    with app.app_context():
        db.session.add(BotStaff(user_id=USER_ID))
        db.session.commit()
    assert user_client.get(f"/api/{GUILD_ID}/roles").status_code == 403

    assert client.post(f"/api/{GUILD_ID}/staff-override", json={"time_period": 2}).status_code == 204
    with app.app_context():
        expires = db.session.get(StaffOverride, GUILD_ID).expires
        assert timedelta(minutes=119) < expires - utcnow() <= timedelta(hours=2)

    assert user_client.get(f"/api/{GUILD_ID}/roles").status_code == 200

    assert client.delete(f"/api/{GUILD_ID}/staff-override").status_code == 204
    assert user_client.get(f"/api/{GUILD_ID}/roles").status_code == 403


def test_expired_override_is_ignored(user_client, app):
    with app.app_context():
        db.session.add(BotStaff(user_id=USER_ID))
        db.session.add(StaffOverride(guild_id=GUILD_ID, expires=utcnow() - timedelta(minutes=1)))
        db.session.commit()
    assert user_client.get(f"/api/{GUILD_ID}/roles").status_code == 403


def test_support_team_member_can_view_tickets(user_client, app):
    with app.app_context():
        team = SupportTeam(guild_id=GUILD_ID, name="Helpers")
        db.session.add(team)
        db.session.flush()
        db.session.add(TeamMember(team_id=team.id, user_id=USER_ID))
        db.session.add(Ticket(id=1, guild_id=GUILD_ID, user_id=3000, open=True))
        db.session.commit()

    r = user_client.get(f"/api/{GUILD_ID}/tickets")
    assert r.status_code == 200
    body = r.get_json()
    assert [t["id"] for t in body["tickets"]] == [1]
    assert body["resolved_users"]["3000"]["username"] == "user3000"
    assert body["self_id"] == str(USER_ID)

    # support is not enough to manage the guild
    assert user_client.get(f"/api/{GUILD_ID}/panels").status_code == 403

# ─────────────────────────────────────────────────────────────────────────────
# Guild metadata
# ─────────────────────────────────────────────────────────────────────────────
def test_channels_are_filtered(client):
    channels = client.get(f"/api/{GUILD_ID}/channels").get_json()
    assert [c["type"] for c in channels] == [0, 4]


def test_premium_status(user_client):
    assert user_client.get(f"/api/{GUILD_ID}/premium").get_json() == {"premium": False, "tier": 0}

# ─────────────────────────────────────────────────────────────────────────────
# Blacklist
# ─────────────────────────────────────────────────────────────────────────────
def _seed_blacklist(app, count):
    with app.app_context():
        for i in range(count):
            db.session.add(BlacklistedUser(guild_id=GUILD_ID, user_id=10_000 + i))
        db.session.add(BlacklistedRole(guild_id=GUILD_ID, role_id=ROLE_ID))
        db.session.commit()


@pytest.mark.parametrize("page,expected", [("1", 30), ("2", 5), ("abc", 30), ("0", 30), ("3", 0)])
def test_blacklist_pagination(client, app, page, expected):
    _seed_blacklist(app, 35)
    body = client.get(f"/api/{GUILD_ID}/blacklist?page={page}").get_json()
    assert body["page_limit"] == 30
    assert len(body["users"]) == expected
    assert body["roles"] == [str(ROLE_ID)]


def test_blacklist_resolves_usernames(client, app):
    _seed_blacklist(app, 1)
    users = client.get(f"/api/{GUILD_ID}/blacklist").get_json()["users"]
    assert users == [{"id": "10000", "username": "user10000"}]


def test_blacklist_add_and_remove(client, app):
    r = client.post(f"/api/{GUILD_ID}/blacklist", json={"entity_type": 0, "snowflake": USER_ID})
    assert r.get_json() == {"success": True, "resolved": True, "id": str(USER_ID)}
    assert client.post(f"/api/{GUILD_ID}/blacklist", json={"entity_type": 1, "snowflake": ROLE_ID}).status_code == 200

    with app.app_context():
        assert BlacklistedUser.query.count() == 1
        assert BlacklistedRole.query.count() == 1

    assert client.delete(f"/api/{GUILD_ID}/blacklist/user/{USER_ID}").status_code == 204
    assert client.delete(f"/api/{GUILD_ID}/blacklist/role/{ROLE_ID}").status_code == 204
    with app.app_context():
        assert BlacklistedUser.query.count() == 0
        assert BlacklistedRole.query.count() == 0


def test_blacklist_rejects_staff_and_unknown_roles(client, app):
    r = client.post(f"/api/{GUILD_ID}/blacklist", json={"entity_type": 0, "snowflake": OWNER_ID})
    assert r.status_code == 400
    assert r.get_json()["error"] == "You cannot blacklist staff members"

    r = client.post(f"/api/{GUILD_ID}/blacklist", json={"entity_type": 1, "snowflake": 999})
    assert r.status_code == 400
    assert r.get_json()["error"] == "Invalid role"

    with app.app_context():
        assert BlacklistedUser.query.count() == 0

# ─────────────────────────────────────────────────────────────────────────────
# Transcripts
# ─────────────────────────────────────────────────────────────────────────────
TRANSCRIPT = {
    "entities": {"users": {"3000": {"id": "3000", "username": "opener"}}},
    "messages": [
        {"author_id": "3000", "content": "My order never arrived", "timestamp": "2024-01-01T00:00:00Z"},
        {"author": {"id": "4000", "username": "staffer"}, "content": "Looking into it"},
    ],
}


@pytest.fixture
def archiver(app):
    archiver = MagicMock(name="ArchiverClient")
    archiver.get.return_value = TRANSCRIPT
    app.extensions["ticketdash.archiver"] = archiver
    return archiver


def _ticket(app, open=False, user_id=3000, panel_id=None):
    with app.app_context():
        db.session.add(Ticket(id=7, guild_id=GUILD_ID, user_id=user_id, open=open, panel_id=panel_id))
        db.session.commit()


def test_opener_can_read_transcript(app, archiver):
    _ticket(app, user_id=USER_ID)
    r = login(app.test_client(), USER_ID).get(f"/api/{GUILD_ID}/transcripts/7")
    assert r.status_code == 200
    assert r.get_json() == TRANSCRIPT
    archiver.get.assert_called_once_with(GUILD_ID, 7)


def test_transcript_of_open_ticket(client, app, archiver):
    _ticket(app, open=True)
    r = client.get(f"/api/{GUILD_ID}/transcripts/7")
    assert r.status_code == 404
    archiver.get.assert_not_called()


def test_invalid_ticket_id(client, archiver):
    r = client.get(f"/api/{GUILD_ID}/transcripts/seven")
    assert r.status_code == 400
    assert r.get_json()["error"] == "Invalid ticket ID"


def test_member_cannot_read_others_transcript(user_client, app, archiver):
    _ticket(app)
    assert user_client.get(f"/api/{GUILD_ID}/transcripts/7").status_code == 403
    archiver.get.assert_not_called()


def test_support_needs_a_shared_team(user_client, app, archiver):
    with app.app_context():
        panel_id = make_panel(with_default_team=False)
        helpers = SupportTeam(guild_id=GUILD_ID, name="Helpers")
        billing = SupportTeam(guild_id=GUILD_ID, name="Billing")
        db.session.add_all([helpers, billing])
        db.session.flush()
        db.session.add(TeamMember(team_id=helpers.id, user_id=USER_ID))
        db.session.add(PanelTeam(panel_id=panel_id, team_id=billing.id))
        db.session.commit()
        billing_id = billing.id
    _ticket(app, panel_id=panel_id)

    assert user_client.get(f"/api/{GUILD_ID}/transcripts/7").status_code == 403

    with app.app_context():
        db.session.add(TeamMember(team_id=billing_id, user_id=USER_ID))
        db.session.commit()
    assert user_client.get(f"/api/{GUILD_ID}/transcripts/7").status_code == 200


def test_missing_archive(client, app, archiver):
    _ticket(app)
    archiver.get.side_effect = TranscriptNotFound()
    r = client.get(f"/api/{GUILD_ID}/transcripts/7")
    assert r.status_code == 404
    assert r.get_json()["error"] == "Transcript not found"


def test_render_transcript(client, app, archiver):
    _ticket(app)
    r = client.get(f"/api/{GUILD_ID}/transcripts/7/render")
    assert r.status_code == 200
    assert r.mimetype == "text/html"
    html = r.get_data(as_text=True)
    assert "opener" in html
    assert "staffer" in html
    assert "My order never arrived" in html

# ─────────────────────────────────────────────────────────────────────────────
# Bot staff
# ─────────────────────────────────────────────────────────────────────────────
def test_bot_staff_listing(client, rest, app):
    assert client.post("/api/admin/botstaff/3000").status_code == 204
    assert client.post("/api/admin/botstaff/4000").status_code == 204

    def get_user(user_id):
        if user_id == 4000:
            raise RestError(404, "Unknown User")
        return {"id": str(user_id), "username": "mod"}
    rest.get_user.side_effect = get_user

    assert client.get("/api/admin/botstaff").get_json() == [
        {"id": "3000", "username": "mod"},
        {"id": "4000", "username": "Unknown User"},
    ]

    assert client.delete("/api/admin/botstaff/3000").status_code == 204
    with app.app_context():
        assert [s.user_id for s in BotStaff.query.all()] == [4000]


def test_bot_staff_requires_bot_admin(user_client):
    assert user_client.get("/api/admin/botstaff").status_code == 401

# ─────────────────────────────────────────────────────────────────────────────
# Whitelabel
# ─────────────────────────────────────────────────────────────────────────────
def _token(bot_id: int) -> str:
    enc = lambda b: base64.urlsafe_b64encode(b).decode().rstrip("=")
    return f"{enc(str(bot_id).encode())}.{enc(b'0000')}.signature"


def _seed_bot(app, user_id=ADMIN_ID, bot_id=99):
    with app.app_context():
        db.session.add(WhitelabelBot(user_id=user_id, bot_id=bot_id, token=_token(bot_id)))
        db.session.commit()


def test_interaction_cooldown(client, rest, app):
    _seed_bot(app)

    r = client.post("/api/whitelabel/create-interactions")
    assert r.status_code == 200
    assert rest.create_global_command.call_count == 9
    assert rest.create_global_command.call_args_list[0].args[0] == 99

    r = client.post("/api/whitelabel/create-interactions")
    assert r.status_code == 400
    assert r.get_json()["error"] == "Interaction creation on cooldown, please wait another 14 minutes"
    assert rest.create_global_command.call_count == 9


def test_interactions_without_bot(client):
    r = client.post("/api/whitelabel/create-interactions")
    assert r.status_code == 404
    assert r.get_json()["error"] == "No bot found"


def test_set_token(client, rest, app):
    rest.get_current_user.return_value = {"id": "99", "username": "My Bot", "bot": True}
    r = client.post("/api/whitelabel", json={"token": _token(99)})
    assert r.status_code == 200
    assert r.get_json()["bot"]["id"] == "99"
    assert client.get("/api/whitelabel").get_json() == {"success": True, "id": "99"}


def test_set_token_switching_bots_drops_guilds(client, rest, app):
    _seed_bot(app, bot_id=99)
    with app.app_context():
        db.session.add(WhitelabelGuild(bot_id=99, guild_id=GUILD_ID))
        db.session.commit()

    rest.get_current_user.return_value = {"id": "100", "bot": True}
    assert client.post("/api/whitelabel", json={"token": _token(100)}).status_code == 200
    with app.app_context():
        assert WhitelabelGuild.query.count() == 0
        assert db.session.get(WhitelabelBot, ADMIN_ID).bot_id == 100


@pytest.mark.parametrize("token,current_user,error", [
    ("", None, "Missing token"),
    ("garbage", None, "Invalid token"),
    (_token(99), {"id": "99", "bot": False}, "Token is not of a bot user"),
])
def test_set_token_errors(client, rest, token, current_user, error):
    rest.get_current_user.return_value = current_user
    r = client.post("/api/whitelabel", json={"token": token})
    assert r.status_code == 400
    assert r.get_json()["error"] == error


def test_set_token_rejected_by_discord(client, rest):
    rest.get_current_user.side_effect = RestError(401, "Unauthorized")
    r = client.post("/api/whitelabel", json={"token": _token(99)})
    assert r.status_code == 400


def test_bot_claimed_by_someone_else(client, rest, app):
    _seed_bot(app, user_id=USER_ID, bot_id=99)
    rest.get_current_user.return_value = {"id": "99", "bot": True}
    r = client.post("/api/whitelabel", json={"token": _token(99)})
    assert r.get_json()["error"] == "This bot is already registered to another user"


def test_recent_errors(client, app):
    with app.app_context():
        base = utcnow()
        for i in range(12):
            db.session.add(WhitelabelError(user_id=ADMIN_ID, message=f"error {i}",
                                           created_at=base + timedelta(seconds=i)))
        db.session.commit()

    errors = client.get("/api/whitelabel/errors").get_json()["errors"]
    assert len(errors) == 10
    assert errors[0]["message"] == "error 11"
