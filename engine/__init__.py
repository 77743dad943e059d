"""Shared helpers for the deterministic PV board engine modules."""

__all__ = [
    "determinism",
]
