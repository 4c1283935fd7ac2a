"""
Session variants seen by the content layer.

Authentication itself happens elsewhere; this module only describes who
is looking at the content so the update cadence can be chosen.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from ..config import UpdatesConfig


EDITORIAL_ROLES = frozenset({"admin", "editor"})


@dataclass(frozen=True)
class Authenticated:
    user_id: str
    role: str


@dataclass(frozen=True)
class Anonymous:
    pass


Session = Union[Authenticated, Anonymous]


def is_admin(session: Session) -> bool:
    match session:
        case Authenticated(role=role):
            return role == "admin"
        case Anonymous():
            return False
    raise TypeError(f"Unknown session type: {type(session).__name__}")


def poll_interval_for(session: Session, cfg: UpdatesConfig) -> float:
    """Polling interval in seconds for the given viewer.

    Editorial sessions watch their own changes land, so they get the
    shorter admin interval; readers get the read-only interval.
    """
    match session:
        case Authenticated(role=role) if role in EDITORIAL_ROLES:
            return cfg.admin_poll_interval_seconds
        case Authenticated():
            return cfg.poll_interval_seconds
        case Anonymous():
            return cfg.poll_interval_seconds
    raise TypeError(f"Unknown session type: {type(session).__name__}")
