from __future__ import annotations
import logging
from urllib.parse import urlencode, urlparse

import requests
from flask import Blueprint, current_app, jsonify, redirect, request, session

from .auth import login_required, session_user

log = logging.getLogger(__name__)

bp = Blueprint("login", __name__, url_prefix="/auth")


def _safe_next(target, dashboard_url):
    """Only same-site paths or the dashboard itself are valid post-login targets."""
    if not target:
        return dashboard_url
    if target.startswith("/") and not target.startswith("//") and "\\" not in target:
        return target
    parsed, dashboard = urlparse(target), urlparse(dashboard_url)
    if dashboard.netloc and (parsed.scheme, parsed.netloc) == (dashboard.scheme, dashboard.netloc):
        return target
    return dashboard_url


# ─────────────────────────────────────────────────────────────────────────────
# Auth (Discord OAuth2)
# ─────────────────────────────────────────────────────────────────────────────
@bp.get("/discord/login")
def discord_login():
    cfg = current_app.config
    session["post_login_redirect"] = _safe_next(request.args.get("next"), cfg["DASHBOARD_URL"])
    params = {
        "client_id": cfg["DISCORD_CLIENT_ID"],
        "response_type": "code",
        "redirect_uri": cfg["OAUTH_REDIRECT_URI"],
        "scope": "identify guilds",
        "prompt": "none",
    }
    return redirect(f"https://discord.com/oauth2/authorize?{urlencode({k: v for k, v in params.items() if v})}")


@bp.get("/discord/callback")
def discord_callback():
    cfg = current_app.config
    code = request.args.get("code")
    if not code:
        return jsonify({"success": False, "error": "No code from Discord"}), 400

    tok = requests.post(
        f"{cfg['DISCORD_API']}/oauth2/token",
        data={
            "client_id": cfg["DISCORD_CLIENT_ID"],
            "client_secret": cfg["DISCORD_CLIENT_SECRET"],
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": cfg["OAUTH_REDIRECT_URI"],
        },
        headers={"Content-Type": "application/x-www-form-urlencoded"},
        timeout=cfg["DISCORD_TIMEOUT"],
    )
    if tok.status_code != 200:
        log.warning("OAuth token exchange failed (%s)", tok.status_code)
        return jsonify({"success": False, "error": "Discord login failed"}), 401

    access_token = tok.json().get("access_token")
    u = requests.get(
        f"{cfg['DISCORD_API']}/users/@me",
        headers={"Authorization": f"Bearer {access_token}"},
        timeout=cfg["DISCORD_TIMEOUT"],
    )
    if u.status_code != 200:
        log.warning("OAuth user lookup failed (%s)", u.status_code)
        return jsonify({"success": False, "error": "Discord login failed"}), 401

    user = u.json()
    session["discord_user"] = {
        "id": user["id"],
        "username": user.get("global_name") or user["username"],
    }
    log.info("User %s logged in", user["id"])
    return redirect(session.pop("post_login_redirect", cfg["DASHBOARD_URL"]))


@bp.get("/me")
@login_required
def me():
    return jsonify(session_user())


@bp.post("/logout")
def logout():
    session.pop("discord_user", None)
    return "", 204
