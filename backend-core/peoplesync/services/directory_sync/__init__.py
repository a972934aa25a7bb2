"""HR <-> chat directory reconciliation."""

from .identity import generate_password, slugify_username, with_collision_suffix
from .models import (
    ChatAccount,
    EmployeeRecord,
    SyncConfig,
    SyncDirection,
    SyncOutcome,
    SyncResult,
)

__all__ = [
    "generate_password",
    "slugify_username",
    "with_collision_suffix",
    "ChatAccount",
    "EmployeeRecord",
    "SyncConfig",
    "SyncDirection",
    "SyncOutcome",
    "SyncResult",
]
