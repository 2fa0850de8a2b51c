from __future__ import annotations
import logging
from typing import Callable

from flask import Blueprint, current_app, g, jsonify

from ..auth import guild_admin_required, login_required
from ..botcontext import public_context
from ..errors import Forbidden, InvalidInput, NotFound
from ..models import (
    CustomIntegration, IntegrationGuild, IntegrationHeader, IntegrationPlaceholder, IntegrationSecret,
    IntegrationSecretValue, db, transaction,
)
from ..schemas import ActivateIntegrationBody, IntegrationBody, parse_body
from ..validation import is_same_validation_url_host, verify_child_ids

log = logging.getLogger(__name__)

bp = Blueprint("integrations", __name__, url_prefix="/api")

MAX_OWNED_INTEGRATIONS = 5
REVIEW_EMBED_COLOUR = 0xFCB97D


def get_integration(integration_id: int) -> CustomIntegration:
    integration = db.session.get(CustomIntegration, integration_id)
    if integration is None:
        raise NotFound("Integration not found")
    return integration


def get_owned_integration(integration_id: int, message: str = "You do not own this integration") -> CustomIntegration:
    integration = get_integration(integration_id)
    if integration.owner_id != g.user_id:
        raise Forbidden(message)
    return integration


def _check_validation_url(body: IntegrationBody):
    if body.validation_url is not None and not is_same_validation_url_host(body.webhook_url, body.validation_url):
        raise InvalidInput("Validation URL must be on the same host as the webhook URL")


def _apply_metadata(integration: CustomIntegration, body: IntegrationBody):
    integration.name = body.name
    integration.description = body.description
    integration.image_url = body.image_url
    integration.privacy_policy_url = body.privacy_policy_url
    integration.http_method = body.http_method
    integration.webhook_url = body.webhook_url
    integration.validation_url = body.validation_url


def _sync_children(model, integration_id: int, items: list, assign: Callable):
    """Upsert ``items`` by ID (0 creates) and drop rows that were left out."""
    existing = {row.id: row for row in model.query.filter_by(integration_id=integration_id).all()}
    kept = set()
    for item in items:
        row = existing.get(item.id) if item.id else None
        if row is None:
            row = model(integration_id=integration_id)
            db.session.add(row)
        else:
            kept.add(row.id)
        assign(row, item)

    for row_id, row in existing.items():
        if row_id not in kept:
            db.session.delete(row)


def _assign_secret(row: IntegrationSecret, item):
    row.name = item.name
    row.description = item.description


def _assign_header(row: IntegrationHeader, item):
    row.name = item.name
    row.value = item.value


def _assign_placeholder(row: IntegrationPlaceholder, item):
    row.name = item.name
    row.json_path = item.json_path


def _sync_all_children(integration_id: int, body: IntegrationBody):
    _sync_children(IntegrationSecret, integration_id, body.secrets, _assign_secret)
    _sync_children(IntegrationHeader, integration_id, body.headers, _assign_header)
    _sync_children(IntegrationPlaceholder, integration_id, body.placeholders, _assign_placeholder)

# ─────────────────────────────────────────────────────────────────────────────
# Owner endpoints
# ─────────────────────────────────────────────────────────────────────────────
@bp.get("/integrations/self")
@login_required
def owned_integrations():
    rows = CustomIntegration.query.filter_by(owner_id=g.user_id).order_by(CustomIntegration.id).all()
    return jsonify([i.to_dict() for i in rows])


@bp.post("/integrations")
@login_required
def create_integration():
    if CustomIntegration.query.filter_by(owner_id=g.user_id).count() >= MAX_OWNED_INTEGRATIONS:
        raise Forbidden(f"You have reached the integration limit ({MAX_OWNED_INTEGRATIONS}/{MAX_OWNED_INTEGRATIONS})")

    body = parse_body(IntegrationBody)
    _check_validation_url(body)

    integration = CustomIntegration(owner_id=g.user_id, public=False, approved=False)
    _apply_metadata(integration, body)

    # supplied child IDs are ignored on create
    for item in body.secrets + body.headers + body.placeholders:
        item.id = 0

    with transaction():
        db.session.add(integration)
        db.session.flush()
        _sync_all_children(integration.id, body)

    log.info("User %s created integration %s", g.user_id, integration.id)
    return jsonify(integration.to_dict())


@bp.get("/integrations/<int:integration_id>/detail")
@login_required
def integration_detail(integration_id: int):
    integration = get_owned_integration(integration_id, "You do not have permission to view this integration")
    out = integration.to_dict()
    out["placeholders"] = [p.to_dict() for p in integration.placeholders]
    out["headers"] = [h.to_dict() for h in integration.headers]
    out["secrets"] = [s.to_dict() for s in integration.secrets]
    return jsonify(out)


@bp.patch("/integrations/<int:integration_id>")
@login_required
def update_integration(integration_id: int):
    body = parse_body(IntegrationBody)
    integration = get_owned_integration(integration_id)
    _check_validation_url(body)

    # every child ID is checked before anything is written
    verify_child_ids("secrets", integration.id, (s.id for s in body.secrets), IntegrationSecret)
    verify_child_ids("headers", integration.id, (h.id for h in body.headers), IntegrationHeader)
    verify_child_ids("placeholders", integration.id, (p.id for p in body.placeholders), IntegrationPlaceholder)

    with transaction():
        _apply_metadata(integration, body)
        _sync_all_children(integration.id, body)

    log.info("User %s updated integration %s", g.user_id, integration.id)
    return jsonify(integration.to_dict())


@bp.delete("/integrations/<int:integration_id>")
@login_required
def delete_integration(integration_id: int):
    integration = get_owned_integration(integration_id)

    with transaction():
        secret_ids = [s.id for s in integration.secrets]
        if secret_ids:
            IntegrationSecretValue.query.filter(IntegrationSecretValue.secret_id.in_(secret_ids)) \
                .delete(synchronize_session=False)
        IntegrationGuild.query.filter_by(integration_id=integration.id).delete()
        db.session.delete(integration)

    log.info("User %s deleted integration %s", g.user_id, integration_id)
    return "", 204


@bp.post("/integrations/<int:integration_id>/public")
@login_required
def set_integration_public(integration_id: int):
    integration = get_owned_integration(integration_id, "You do not have permission to manage this integration")
    if integration.public:
        raise InvalidInput("You have already requested to make this integration public")

    cfg = current_app.config
    embed = {
        "title": "Public Integration Request",
        "color": REVIEW_EMBED_COLOUR,
        "fields": [
            {"name": "Integration ID", "value": str(integration.id), "inline": True},
            {"name": "Integration Name", "value": integration.name, "inline": True},
            {"name": "Integration URL", "value": f"`{integration.webhook_url}`", "inline": True},
            {"name": "Integration Owner", "value": f"<@{integration.owner_id}>", "inline": True},
            {"name": "Integration Description", "value": integration.description, "inline": False},
        ],
    }
    public_context().rest.execute_webhook(
        cfg["PUBLIC_INTEGRATION_WEBHOOK_ID"], cfg["PUBLIC_INTEGRATION_WEBHOOK_TOKEN"], {"embeds": [embed]},
    )

    with transaction():
        integration.public = True

    log.info("User %s requested integration %s be made public", g.user_id, integration.id)
    return "", 204

# ─────────────────────────────────────────────────────────────────────────────
# Per-guild activation
# ─────────────────────────────────────────────────────────────────────────────
def _is_active(integration_id: int, guild_id: int) -> bool:
    return IntegrationGuild.query.filter_by(integration_id=integration_id, guild_id=guild_id).first() is not None


@bp.get("/<int:guild_id>/integrations/<int:integration_id>")
@guild_admin_required
def is_integration_active(guild_id: int, integration_id: int):
    return jsonify({"active": _is_active(integration_id, guild_id)})


@bp.post("/<int:guild_id>/integrations/<int:integration_id>")
@guild_admin_required
def activate_integration(guild_id: int, integration_id: int):
    body = parse_body(ActivateIntegrationBody)
    integration = get_integration(integration_id)

    if integration.owner_id != g.user_id and not (integration.public and integration.approved):
        raise Forbidden("You do not have permission to use this integration")

    if _is_active(integration_id, guild_id):
        raise InvalidInput("This integration is already active in this server")

    secrets = {s.id: s for s in integration.secrets}
    if any(secret_id not in secrets for secret_id in body.secrets):
        raise InvalidInput("Invalid secret ID")
    for secret in secrets.values():
        if secret.id not in body.secrets:
            raise InvalidInput(f"Missing value for secret \"{secret.name}\"")

    with transaction():
        db.session.add(IntegrationGuild(integration_id=integration_id, guild_id=guild_id))
        for secret_id, value in body.secrets.items():
            existing = db.session.get(IntegrationSecretValue, (secret_id, guild_id))
            if existing is None:
                db.session.add(IntegrationSecretValue(secret_id=secret_id, guild_id=guild_id, value=value))
            else:
                existing.value = value

    log.info("Integration %s activated in guild %s", integration_id, guild_id)
    return "", 204


@bp.delete("/<int:guild_id>/integrations/<int:integration_id>")
@guild_admin_required
def remove_integration(guild_id: int, integration_id: int):
    integration = get_integration(integration_id)

    with transaction():
        IntegrationGuild.query.filter_by(integration_id=integration_id, guild_id=guild_id).delete()
        secret_ids = [s.id for s in integration.secrets]
        if secret_ids:
            IntegrationSecretValue.query.filter(
                IntegrationSecretValue.secret_id.in_(secret_ids), IntegrationSecretValue.guild_id == guild_id,
            ).delete(synchronize_session=False)

    return "", 204
