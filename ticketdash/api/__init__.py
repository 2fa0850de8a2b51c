from __future__ import annotations

from flask import Flask


def register_blueprints(app: Flask):
    from .blacklist import bp as blacklist_bp
    from .forms import bp as forms_bp
    from .guild import bp as guild_bp
    from .integrations import bp as integrations_bp
    from .multipanels import bp as multipanels_bp
    from .panels import bp as panels_bp
    from .staff import bp as staff_bp
    from .tags import bp as tags_bp
    from .teams import bp as teams_bp
    from .tickets import bp as tickets_bp
    from .transcripts import bp as transcripts_bp
    from .whitelabel import bp as whitelabel_bp

    for bp in (
        panels_bp, multipanels_bp, forms_bp, integrations_bp, tags_bp, teams_bp, blacklist_bp,
        transcripts_bp, tickets_bp, guild_bp, staff_bp, whitelabel_bp,
    ):
        app.register_blueprint(bp)
