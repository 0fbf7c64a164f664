"""Loyalty card platform API."""
