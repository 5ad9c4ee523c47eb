from __future__ import annotations

import logging
import time

_LAST: dict[str, float] = {}
_MAX_CODES = 256


def warn_once(logger: logging.Logger, code: str, message: str, *args, window: float = 60.0) -> bool:
    """Log ``message`` for ``code`` at most once per ``window`` seconds.

    Sync failures tend to repeat on every debounce cycle while a device is
    offline; throttling keeps the log readable. Returns ``True`` when the
    warning was emitted.
    """
    now = time.monotonic()
    last = _LAST.get(code)
    if last is not None and now - last <= window:
        return False
    if len(_LAST) >= _MAX_CODES:
        oldest = min(_LAST, key=_LAST.get)
        _LAST.pop(oldest, None)
    _LAST[code] = now
    logger.warning("%s: " + message, code, *args)
    return True


def reset_warnings() -> None:
    """Forget every throttled code so the next warning is logged again."""
    _LAST.clear()


__all__ = ["warn_once", "reset_warnings"]
