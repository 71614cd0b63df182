"""Exceptions raised by the learning primitives."""

from __future__ import annotations


class InvalidModelStateError(RuntimeError):
    """Inference was requested from a model that has not been fitted."""
