# src/veledger/runtime/apply/__init__.py
"""Domain-specific apply modules.

Each module implements deterministic ledger state transitions for a subset of
tx types and exposes one ``apply_<domain>(state, env, ctx)`` entry point that
returns a meta dict, or None when the tx type belongs to another domain.

NOTE: Keep this package import-safe (no imports of domain_dispatch here).
"""

from __future__ import annotations

__all__ = [
    "claims",
    "context",
    "control",
    "delegates",
    "epochs",
    "escrow",
    "pools",
    "voting",
]
