from flask import Blueprint, request

from kg_api.common.auth import requires_roles
from kg_api.common.errors import ValidationError
from kg_api.common.http import ok
from kg_api.services.settings_store import SettingsStore, settings_json

bp = Blueprint("settings", __name__, url_prefix="/api/v1/settings")


@bp.get("/payroll")
@requires_roles("admin")
def get_payroll_settings():
    return ok(settings_json(SettingsStore.for_app().get()))


@bp.put("/payroll")
@requires_roles("admin")
def put_payroll_settings():
    j = request.get_json(silent=True)
    if not isinstance(j, dict):
        raise ValidationError("JSON object expected")
    return ok(settings_json(SettingsStore.for_app().update(j)))
