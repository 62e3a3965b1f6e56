# src/veledger/runtime/apply/context.py
from __future__ import annotations

from dataclasses import dataclass, field

from veledger.runtime.authority import Authority, StateRoleAuthority
from veledger.runtime.custody import Custody, StateCustody


@dataclass(frozen=True)
class ApplyContext:
    """Collaborators handed to every applier.

    Appliers never look up roles or move funds on their own; they go through
    these two objects so hosts can swap in their own access-control and
    custody backends.
    """

    authority: Authority = field(default_factory=StateRoleAuthority)
    custody: Custody = field(default_factory=StateCustody)


def default_context() -> ApplyContext:
    return ApplyContext()


__all__ = ["ApplyContext", "default_context"]
