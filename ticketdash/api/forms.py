from __future__ import annotations
import logging

from flask import Blueprint, jsonify

from ..auth import guild_admin_required
from ..errors import Forbidden, InvalidInput, NotFound
from ..models import Form, FormInput, Panel, db, transaction
from ..panels import random_custom_id
from ..schemas import FormBody, UpdateInputsBody, parse_body
from ..validation import validate_input_update

log = logging.getLogger(__name__)

bp = Blueprint("forms", __name__, url_prefix="/api/<int:guild_id>/forms")

MAX_FORMS = 20


def get_form(guild_id: int, form_id: int) -> Form:
    form = db.session.get(Form, form_id)
    if form is None:
        raise NotFound("Form not found")
    if form.guild_id != guild_id:
        raise Forbidden("Form does not belong to this guild")
    return form


@bp.get("")
@guild_admin_required
def list_forms(guild_id: int):
    forms = Form.query.filter_by(guild_id=guild_id).order_by(Form.id).all()
    return jsonify([f.to_dict() for f in forms])


@bp.post("")
@guild_admin_required
def create_form(guild_id: int):
    body = parse_body(FormBody)

    if Form.query.filter_by(guild_id=guild_id).count() >= MAX_FORMS:
        raise InvalidInput(f"You cannot have more than {MAX_FORMS} forms")

    form = Form(guild_id=guild_id, title=body.title, custom_id=random_custom_id())
    with transaction():
        db.session.add(form)

    log.info("Created form %s in guild %s", form.id, guild_id)
    return jsonify(form.to_dict())


@bp.patch("/<int:form_id>")
@guild_admin_required
def rename_form(guild_id: int, form_id: int):
    body = parse_body(FormBody)
    form = get_form(guild_id, form_id)

    with transaction():
        form.title = body.title
    return jsonify(form.to_dict())


@bp.delete("/<int:form_id>")
@guild_admin_required
def delete_form(guild_id: int, form_id: int):
    form = get_form(guild_id, form_id)

    with transaction():
        # panels keep working without a form
        Panel.query.filter_by(form_id=form_id).update({"form_id": None})
        Panel.query.filter_by(exit_survey_form_id=form_id).update({"exit_survey_form_id": None})
        db.session.delete(form)

    log.info("Deleted form %s in guild %s", form_id, guild_id)
    return jsonify({"success": True})


@bp.patch("/<int:form_id>/inputs")
@guild_admin_required
def update_inputs(guild_id: int, form_id: int):
    body = parse_body(UpdateInputsBody)
    form = get_form(guild_id, form_id)
    validate_input_update(body, form.inputs)

    existing = {i.id: i for i in form.inputs}
    with transaction():
        for input_id in body.delete:
            db.session.delete(existing[input_id])

        for data in body.update:
            row = existing[data.id]
            row.position = data.position
            row.style = data.style
            row.label = data.label
            row.placeholder = data.placeholder
            row.required = data.required
            row.min_length = data.min_length
            row.max_length = data.max_length

        for data in body.create:
            db.session.add(FormInput(
                form_id=form.id,
                position=data.position,
                custom_id=random_custom_id(),
                style=data.style,
                label=data.label,
                placeholder=data.placeholder,
                required=data.required,
                min_length=data.min_length,
                max_length=data.max_length,
            ))

    return "", 204
