from __future__ import annotations
import threading
from dataclasses import dataclass
from typing import Any

from flask import current_app

from .cache import GuildCache
from .discord import DiscordRest, RateLimiter
from .models import WhitelabelBot, WhitelabelGuild


class RestFactory:
    """Builds REST clients, sharing one rate limiter per bot token."""

    def __init__(self, api_base: str, timeout: float):
        self.api_base = api_base
        self.timeout = timeout
        self._lock = threading.Lock()
        self._limiters: dict[str, RateLimiter] = {}

    def __call__(self, token: str) -> DiscordRest:
        with self._lock:
            limiter = self._limiters.setdefault(token, RateLimiter())
        return DiscordRest(token, api_base=self.api_base, limiter=limiter, timeout=self.timeout)


@dataclass
class BotContext:
    """Identity the dashboard acts as inside one guild."""
    bot_id: int
    token: str
    rest: Any
    cache: GuildCache

    def get_channels(self, guild_id: int) -> list[dict]:
        return self.cache.get_channels(self.rest, guild_id)

    def get_roles(self, guild_id: int) -> list[dict]:
        return self.cache.get_roles(self.rest, guild_id)


def get_cache() -> GuildCache:
    return current_app.extensions["ticketdash.cache"]


def rest_for(token: str):
    return current_app.extensions["ticketdash.rest_factory"](token)


def public_context() -> BotContext:
    cfg = current_app.config
    token = cfg["DISCORD_BOT_TOKEN"]
    return BotContext(cfg["DISCORD_BOT_ID"], token, rest_for(token), get_cache())


def context_for_guild(guild_id: int) -> BotContext:
    """Whitelabel bot if the guild uses one, else the public bot."""
    wl = WhitelabelGuild.query.filter_by(guild_id=guild_id).first()
    if wl:
        bot = WhitelabelBot.query.filter_by(bot_id=wl.bot_id).first()
        if bot:
            return BotContext(bot.bot_id, bot.token, rest_for(bot.token), get_cache())
    return public_context()
