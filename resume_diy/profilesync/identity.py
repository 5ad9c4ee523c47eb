from __future__ import annotations

import logging
import secrets

from ..const import STORE_KEY_DEVICE_TOKEN
from .local_store import LocalStore

_LOGGER = logging.getLogger(__name__)

TOKEN_BYTES = 16


def generate_device_token() -> str:
    """Return a fresh 128-bit random actor identifier."""

    return secrets.token_hex(TOKEN_BYTES)


def get_or_create_device_token(store: LocalStore) -> str:
    """Return the device token, creating and persisting it on first use.

    The token only tells the profile service which devices may sync a
    profile. It is not a credential.
    """

    existing = store.read(STORE_KEY_DEVICE_TOKEN)
    if isinstance(existing, str) and existing.strip():
        return existing.strip()
    token = generate_device_token()
    store.write(STORE_KEY_DEVICE_TOKEN, token)
    _LOGGER.debug("Generated new device token")
    return token


__all__ = ["generate_device_token", "get_or_create_device_token"]
