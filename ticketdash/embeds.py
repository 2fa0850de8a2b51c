from __future__ import annotations
from typing import Optional

from .models import Embed, EmbedField
from .schemas import CustomEmbedBody


def embed_from_body(guild_id: int, body: CustomEmbedBody) -> Embed:
    embed = Embed(
        guild_id=guild_id,
        title=body.title,
        description=body.description,
        url=body.url,
        colour=body.colour,
        image_url=body.image_url,
        thumbnail_url=body.thumbnail_url,
        timestamp=body.timestamp,
    )
    if body.author:
        embed.author_name = body.author.name
        embed.author_icon_url = body.author.icon_url
        embed.author_url = body.author.url
    if body.footer:
        embed.footer_text = body.footer.text
        embed.footer_icon_url = body.footer.icon_url
    embed.fields = [
        EmbedField(position=i, name=f.name, value=f.value, inline=f.inline)
        for i, f in enumerate(body.fields)
    ]
    return embed


def embed_has_content(body: CustomEmbedBody) -> bool:
    return bool(body.description or body.fields or body.image_url or body.thumbnail_url)


def embed_to_dict(embed: Embed) -> dict:
    return {
        "title": embed.title,
        "description": embed.description,
        "url": embed.url,
        "colour": embed.colour,
        "author": {"name": embed.author_name, "icon_url": embed.author_icon_url, "url": embed.author_url},
        "image_url": embed.image_url,
        "thumbnail_url": embed.thumbnail_url,
        "footer": {"text": embed.footer_text, "icon_url": embed.footer_icon_url},
        "timestamp": embed.timestamp.isoformat() if embed.timestamp else None,
        "fields": [{"name": f.name, "value": f.value, "inline": bool(f.inline)} for f in embed.fields],
    }


def embed_payload(embed: Optional[Embed]) -> Optional[dict]:
    """Stored embed in the shape Discord expects in a message body."""
    if embed is None:
        return None
    out: dict = {"color": embed.colour or 0}
    if embed.title:
        out["title"] = embed.title
    if embed.description:
        out["description"] = embed.description
    if embed.url:
        out["url"] = embed.url
    if embed.author_name:
        out["author"] = {"name": embed.author_name, "icon_url": embed.author_icon_url, "url": embed.author_url}
    if embed.image_url:
        out["image"] = {"url": embed.image_url}
    if embed.thumbnail_url:
        out["thumbnail"] = {"url": embed.thumbnail_url}
    if embed.footer_text:
        out["footer"] = {"text": embed.footer_text, "icon_url": embed.footer_icon_url}
    if embed.timestamp:
        out["timestamp"] = embed.timestamp.isoformat()
    if embed.fields:
        out["fields"] = [{"name": f.name, "value": f.value, "inline": bool(f.inline)} for f in embed.fields]
    return out
