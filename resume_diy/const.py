from __future__ import annotations

DOMAIN = "resume_diy"

# Local store keys. Each entry is read and written independently.
STORE_KEY_DOCUMENT = "document"
STORE_KEY_DEVICE_TOKEN = "device_token"
STORE_KEY_PROFILE = "profile"
STORE_KEY_VIEW_OPTIONS = "view_options"

STORE_KEYS: tuple[str, ...] = (
    STORE_KEY_DOCUMENT,
    STORE_KEY_DEVICE_TOKEN,
    STORE_KEY_PROFILE,
    STORE_KEY_VIEW_OPTIONS,
)

# Localized text pairs carry one slot per supported locale
LOCALES: tuple[str, str] = ("zh", "en")
DEFAULT_LOCALE = "en"

DEFAULT_VIEW_OPTIONS: dict[str, object] = {
    "layout": "classic",
    "palette": "clean-blue",
    "showIcons": True,
    "fontScale": 100,
}

PROFILE_NAME_MIN_LENGTH = 2
PROFILE_NAME_MAX_LENGTH = 100
DEVICE_TOKEN_MAX_LENGTH = 200

CONF_BASE_URL = "base_url"
CONF_STORE_PATH = "store_path"
CONF_DEBOUNCE_MS = "debounce_ms"
CONF_MIN_PUSH_SPACING_MS = "min_push_spacing_ms"
CONF_REQUEST_TIMEOUT = "request_timeout"
CONF_LOCALE = "locale"

DEFAULT_SYNC_INTERVAL_MS = 5000
MIN_SYNC_INTERVAL_MS = 100
DEFAULT_REQUEST_TIMEOUT = 30
DEFAULT_STORE_FILENAME = "resume_diy.db"

PROFILES_ENDPOINT = "/resume-profiles"
