"""Removal of credentials from generated text."""

import logging
import re
from collections.abc import Iterable
from urllib.parse import quote

from .models import Credential

logger = logging.getLogger(__name__)

OAUTH_MARKER = "x-oauth-basic"

_OAUTH_USERINFO_RE = re.compile(r"[^/@\s'\"`]*:" + re.escape(OAUTH_MARKER) + "@")


def _patterns(credential: Credential) -> list[str]:
    secret = credential.secret
    if not secret:
        return []

    patterns = []
    if credential.username:
        patterns.append(f"{credential.username}:{secret}@")
        encoded_user = quote(credential.username, safe="")
        encoded_secret = quote(secret, safe="")
        if (encoded_user, encoded_secret) != (credential.username, secret):
            patterns.append(f"{encoded_user}:{encoded_secret}@")
    patterns.append(f"{secret}:{OAUTH_MARKER}@")
    patterns.append(f"{secret}@")

    encoded = quote(secret, safe="")
    if encoded != secret:
        patterns.append(encoded)
    patterns.append(secret)
    return patterns


def scrub(text: str, credentials: Iterable[Credential]) -> str:
    """Remove every credential from ``text``.

    Userinfo embeddings are removed before bare secrets so no dangling
    ``user:`` prefix is left behind in a URL.

    Args:
        text: Podfile or lockfile content
        credentials: Credentials used during this update

    Returns:
        Text with no secret, no ``user:secret@`` pair and no ``x-oauth-basic``
    """
    removed = 0
    for credential in credentials:
        for pattern in _patterns(credential):
            count = text.count(pattern)
            if count:
                removed += count
                text = text.replace(pattern, "")

    text, count = _OAUTH_USERINFO_RE.subn("", text)
    removed += count
    count = text.count(OAUTH_MARKER)
    if count:
        removed += count
        text = text.replace(OAUTH_MARKER, "")

    if removed:
        logger.warning("Removed %d credential occurrence(s) from output", removed)
    return text
