# kg_api/common/auth.py
from __future__ import annotations

from dataclasses import dataclass, field
from functools import wraps
from typing import Optional, Set

from flask_jwt_extended import jwt_required, get_jwt, get_jwt_identity

from kg_api.common.http import fail
from kg_api.extensions import db
from kg_api.models.user import User
from kg_api.models.security import Role, UserRole

ADMIN_ROLE = "admin"


@dataclass(frozen=True)
class Identity:
    user_id: Optional[int]
    roles: Set[str] = field(default_factory=set)

    @property
    def is_admin(self) -> bool:
        return ADMIN_ROLE in self.roles


# ---------- helpers ----------

def _collect_roles_from_db(user_id: int) -> Set[str]:
    q = (
        db.session.query(Role.code)
        .join(UserRole, UserRole.role_id == Role.id)
        .filter(UserRole.user_id == user_id)
        .distinct()
    )
    return {row[0] for row in q.all()}


def current_identity() -> Identity:
    """
    Resolve the caller from the JWT of the current request.
    Roles come from the token claims; tokens issued without a 'roles' claim
    fall back to a DB read.
    """
    claims = get_jwt() or {}
    raw = get_jwt_identity()
    try:
        uid = int(raw) if raw is not None else None
    except (TypeError, ValueError):
        uid = None

    roles = set(claims.get("roles") or [])
    if not roles and uid is not None:
        roles = _collect_roles_from_db(uid)
    return Identity(user_id=uid, roles=roles)


# ---------- decorators ----------

def requires_roles(*codes: str):
    """
    Require that the current user has AT LEAST ONE of the given role codes.
    - Uses roles in JWT if present; falls back to DB.
    - 'admin' role always passes.
    """
    def outer(fn):
        @wraps(fn)
        @jwt_required()
        def inner(*args, **kwargs):
            ident = current_identity()
            if ident.user_id is None:
                return fail("Unauthorized", status=401)
            if ident.is_admin:
                return fn(*args, **kwargs)

            if not ident.roles and db.session.get(User, ident.user_id) is None:
                return fail("Unauthorized", status=401)

            if not any(r in ident.roles for r in codes):
                return fail("Forbidden", status=403, code="FORBIDDEN")

            return fn(*args, **kwargs)
        return inner
    return outer
