from __future__ import annotations

from dataclasses import dataclass

from flask import g
from flask_login import current_user

from mortuorio.core.models import Rol, User


@dataclass(frozen=True)
class Actor:
    id: int
    role: Rol

    @classmethod
    def from_user(cls, user: User) -> "Actor":
        return cls(id=user.id, role=user.role)


def load_actor_context() -> None:
    g.actor = None
    if not current_user.is_authenticated:
        return
    g.actor = Actor.from_user(current_user)


def current_actor() -> Actor | None:
    actor = getattr(g, "actor", None)
    if actor is None and current_user.is_authenticated:
        actor = Actor.from_user(current_user)
        g.actor = actor
    return actor
