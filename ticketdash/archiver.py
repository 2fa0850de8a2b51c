from __future__ import annotations
import logging

import requests
from flask import current_app

log = logging.getLogger(__name__)


class TranscriptNotFound(Exception):
    pass


class ArchiverClient:
    """Reads closed-ticket transcripts from the archive service."""

    def __init__(self, base_url: str, timeout: float = 10, session: requests.Session | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def get(self, guild_id: int, ticket_id: int) -> dict:
        r = self.session.get(
            f"{self.base_url}/",
            params={"guild": guild_id, "id": ticket_id},
            timeout=self.timeout,
        )
        if r.status_code == 404:
            raise TranscriptNotFound(f"{guild_id}/{ticket_id}")
        r.raise_for_status()
        return r.json()


def get_archiver() -> ArchiverClient:
    return current_app.extensions["ticketdash.archiver"]
