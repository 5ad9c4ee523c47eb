"""Offline-first résumé editor with opportunistic profile sync."""

from .const import DOMAIN

__all__ = ["DOMAIN"]
