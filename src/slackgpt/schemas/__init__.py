"""Pydantic models shared across the bridge."""
