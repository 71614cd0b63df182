"""Pydantic domain models shared across the engine."""
