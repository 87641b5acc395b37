"""Process-wide runtime flags shared across modules."""
from __future__ import annotations

from dataclasses import dataclass


@dataclass
class RuntimeState:
    scheduler_active: bool = False
    scheduler_lock_held: bool = False


_state = RuntimeState()


def set_scheduler_active(active: bool, *, lock_held: bool | None = None) -> None:
    _state.scheduler_active = active
    if lock_held is not None:
        _state.scheduler_lock_held = lock_held


def is_scheduler_active() -> bool:
    return _state.scheduler_active


def is_scheduler_lock_held() -> bool:
    return _state.scheduler_lock_held
