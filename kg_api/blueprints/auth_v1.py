from datetime import timedelta

from flask import Blueprint, request
from flask_jwt_extended import (
    create_access_token, create_refresh_token,
    jwt_required, get_jwt_identity
)
from kg_api.models.user import User
from kg_api.extensions import db
from kg_api.common.http import ok, fail

bp = Blueprint("auth_v1", __name__, url_prefix="/api/v1/auth")

def _user_payload(u: User):
    return {"id": u.id, "email": u.email, "fullName": u.full_name,
            "roles": u.role_codes(), "staffId": u.staff_id}

def _claims(u: User):
    return {"roles": u.role_codes(), "email": u.email, "name": u.full_name}

@bp.post("/login")
def login():
    data = request.get_json(silent=True, force=True)
    if not isinstance(data, dict):
        data = {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    u = User.query.filter_by(email=email).first()
    if not u or not u.check_password(password) or (u.status or "active") != "active":
        return fail("Invalid credentials", 401)

    access  = create_access_token(identity=str(u.id), additional_claims=_claims(u), expires_delta=timedelta(days=1))
    refresh = create_refresh_token(identity=str(u.id), additional_claims={"roles": u.role_codes()})
    return ok({"access": access, "refresh": refresh, "user": _user_payload(u)})

@bp.post("/refresh")
@jwt_required(refresh=True)
def refresh():
    uid = get_jwt_identity()
    u = db.session.get(User, int(uid)) if uid else None
    if not u:
        return fail("User not found", 401)
    return ok({"access": create_access_token(identity=str(u.id), additional_claims=_claims(u))})

@bp.get("/me")
@jwt_required()
def me():
    uid = get_jwt_identity()
    u = db.session.get(User, int(uid)) if uid else None
    if not u:
        return fail("User not found", 404)
    return ok(_user_payload(u))
