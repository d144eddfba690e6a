from __future__ import annotations

from functools import wraps

from flask import abort
from flask_login import current_user

from mortuorio.core.errors import Forbidden
from mortuorio.core.models import Rol


def _allowed(role: Rol, roles: tuple[Rol, ...]) -> bool:
    return role == Rol.ADMIN or role in roles


def require_role(*roles: Rol):
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            if not current_user.is_authenticated:
                abort(401)
            if not _allowed(current_user.role, roles):
                abort(403)
            return fn(*args, **kwargs)

        return wrapper

    return decorator


def ensure_role(actor, *roles: Rol) -> None:
    if actor is None:
        raise Forbidden("Usuario no autenticado")
    if not _allowed(actor.role, roles):
        allowed = ", ".join(role.value for role in roles) or Rol.ADMIN.value
        raise Forbidden(f"El rol {actor.role.value} no puede realizar esta accion (requiere {allowed})")
