"""Remote profile fetch.

Downloads a subscription document and the metadata its server reports in
response headers. Failures raise :class:`FetchError`; callers keep the
existing profile content.
"""

from __future__ import annotations

import logging
import re
import urllib.error
import urllib.request
from collections.abc import Mapping
from dataclasses import dataclass
from urllib.parse import unquote, urlparse

from proxctl.domain.profiles import SubscriptionInfo

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "proxctl/0.1"
_USERINFO_FIELD = re.compile(r"\s*(upload|download|total|expire)\s*=\s*(\d+)", re.IGNORECASE)
_FILENAME_EXT = re.compile(r"filename\*\s*=\s*([^;]+)", re.IGNORECASE)
_FILENAME = re.compile(r'filename\s*=\s*(?:"([^"]*)"|([^;]+))', re.IGNORECASE)


class FetchError(Exception):
    """The remote document could not be retrieved."""

    def __init__(self, url: str, message: str) -> None:
        super().__init__(f"{url}: {message}")
        self.url = url
        self.message = message


@dataclass(frozen=True)
class FetchResult:
    content: str
    filename: str | None = None
    interval: int | None = None  # minutes
    extra: SubscriptionInfo | None = None


def fetch(
    url: str,
    *,
    headers: Mapping[str, str] | None = None,
    timeout: float = 20.0,
    user_agent: str = DEFAULT_USER_AGENT,
) -> FetchResult:
    """GET *url* and return its body plus header metadata.

    Raises:
        FetchError: Bad scheme, network error, HTTP error status, or a
            body that is not UTF-8 text.
    """
    if urlparse(url).scheme not in ("http", "https"):
        raise FetchError(url, "only http and https URLs are supported")

    request = urllib.request.Request(url, headers={"User-Agent": user_agent, **(headers or {})})
    logger.debug("Fetching %s", url)
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            body = response.read()
            response_headers = response.headers
    except urllib.error.HTTPError as exc:
        raise FetchError(url, f"HTTP {exc.code} {exc.reason}") from exc
    except urllib.error.URLError as exc:
        raise FetchError(url, str(exc.reason)) from exc
    except (OSError, ValueError) as exc:
        raise FetchError(url, str(exc)) from exc

    try:
        content = body.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise FetchError(url, "response is not UTF-8 text") from exc

    return FetchResult(
        content=content,
        filename=parse_filename(response_headers.get("Content-Disposition")),
        interval=parse_interval(response_headers.get("profile-update-interval")),
        extra=parse_userinfo(response_headers.get("subscription-userinfo")),
    )


def parse_filename(disposition: str | None) -> str | None:
    """Pull the filename out of a Content-Disposition header.

    ``filename*=`` (RFC 5987) is preferred over plain ``filename=``.
    """
    if not disposition:
        return None
    extended = _FILENAME_EXT.search(disposition)
    if extended:
        _charset, _, encoded = extended.group(1).strip().rpartition("'")
        name = unquote(encoded).strip()
        if name:
            return name
    plain = _FILENAME.search(disposition)
    if plain:
        return (plain.group(1) or plain.group(2) or "").strip() or None
    return None


def parse_interval(value: str | None) -> int | None:
    """``profile-update-interval`` is in hours; profiles store minutes."""
    if not value:
        return None
    try:
        hours = float(value.strip())
    except ValueError:
        logger.debug("Ignoring malformed update interval %r", value)
        return None
    if hours <= 0:
        return None
    return int(hours * 60)


def parse_userinfo(value: str | None) -> SubscriptionInfo | None:
    """Parse ``upload=1; download=2; total=3; expire=4``."""
    if not value:
        return None
    fields = {
        match.group(1).lower(): int(match.group(2))
        for match in _USERINFO_FIELD.finditer(value)
    }
    if not fields:
        return None
    return SubscriptionInfo(**fields)
