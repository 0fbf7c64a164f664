"""Loyalty maintenance jobs."""

from .card_maintenance import run_card_maintenance  # noqa: F401
