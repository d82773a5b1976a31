from __future__ import annotations

import re

from inboxshot.constants import MAX_KEY_LENGTH

_UNSAFE_HYPHEN = re.compile(r"[^a-z0-9\s.\-]")
_UNSAFE_UNDERSCORE = re.compile(r"[^a-z0-9\s._\-]")
_WHITESPACE = re.compile(r"\s+")
_SLUG_UNSAFE = re.compile(r"[^a-z0-9]+")


def sanitize(raw: str, use_hyphens: bool = True) -> str:
    """Turn a free-form task name into a filesystem friendly key.

    ``sanitize("EB 21397 Staging")`` gives ``"eb-21397-staging"`` and
    ``sanitize("EB 21397 Staging", use_hyphens=False)`` gives
    ``"eb_21397_staging"``. The result is at most 100 characters long and is a
    fixed point: sanitizing it again returns it unchanged. Callers must treat
    an empty result as a configuration error.
    """
    if use_hyphens:
        separator, unsafe = "-", _UNSAFE_HYPHEN
    else:
        # The separator itself has to survive a second pass.
        separator, unsafe = "_", _UNSAFE_UNDERSCORE
    cleaned = unsafe.sub("", (raw or "").lower())
    return _WHITESPACE.sub(separator, cleaned)[:MAX_KEY_LENGTH]


def screenshot_name(client: str) -> str:
    """Baseline file name for a client id, e.g. ``outlook16_win`` -> ``outlook16-win.png``."""
    return f"{_SLUG_UNSAFE.sub('-', client.lower())}.png"
