"""Expand ``{{Type,arg,...}}`` tokens embedded in scraper strings."""
from __future__ import annotations

import logging
import re
import secrets
import string
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable
from urllib.parse import SplitResult, urlsplit

from webscraper.schemas.scraper import DATA_KEY_PATTERN


logger = logging.getLogger(__name__)

SPECIAL_STRING_PATTERN = re.compile(r"\{\{([^,}]+),?([^}]+)?}\}")
DEFAULT_RANDOM_STRING_LENGTH = 16

_DATA_KEY_RE = re.compile(DATA_KEY_PATTERN)
_RANDOM_ALPHABET = string.ascii_letters + string.digits
_DEFAULT_PORTS = {"http": 80, "https": 443, "ws": 80, "wss": 443, "ftp": 21}


class SpecialStringType(str, Enum):
    DATA_KEY = "DataKey"
    RANDOM_STRING = "RandomString"
    CURRENT_URL = "CurrentUrl"


class SpecialStringError(ValueError):
    """Raised when a special string token cannot be expanded."""


ExternalDataGetter = Callable[[str], Awaitable["str | int | float | None"]]
PageUrlGetter = Callable[[int], Awaitable["str | None"]]


@dataclass
class SpecialStringContext:
    """Callbacks used to resolve tokens that depend on the running scraper."""

    get_external_data: ExternalDataGetter
    get_page_url: PageUrlGetter | None = None
    logger: logging.Logger = field(default=logger)


def random_string(length: int = DEFAULT_RANDOM_STRING_LENGTH) -> str:
    """Return a random alphanumeric string of ``length`` characters."""

    return "".join(secrets.choice(_RANDOM_ALPHABET) for _ in range(length))


def _host(parts: SplitResult) -> str:
    hostname = parts.hostname or ""
    port = _port(parts)
    return f"{hostname}:{port}" if port else hostname


def _port(parts: SplitResult) -> str:
    port = parts.port
    if port is None or _DEFAULT_PORTS.get(parts.scheme) == port:
        return ""
    return str(port)


def _origin(parts: SplitResult) -> str:
    if parts.scheme not in _DEFAULT_PORTS:
        return "null"
    return f"{parts.scheme}://{_host(parts)}"


_URL_PROPERTIES: dict[str, Callable[[str, SplitResult], str]] = {
    "href": lambda url, parts: url,
    "origin": lambda url, parts: _origin(parts),
    "protocol": lambda url, parts: f"{parts.scheme}:",
    "username": lambda url, parts: parts.username or "",
    "password": lambda url, parts: parts.password or "",
    "host": lambda url, parts: _host(parts),
    "hostname": lambda url, parts: parts.hostname or "",
    "port": lambda url, parts: _port(parts),
    "pathname": lambda url, parts: parts.path
    or ("/" if parts.scheme in _DEFAULT_PORTS else ""),
    "search": lambda url, parts: f"?{parts.query}" if parts.query else "",
    "hash": lambda url, parts: f"#{parts.fragment}" if parts.fragment else "",
}


def get_url_property(url: str, name: str) -> str:
    """Return the string-valued URL property ``name`` of ``url``.

    Property names follow the browser ``URL`` interface (``hostname``,
    ``pathname``, ``search`` and so on).
    """

    getter = _URL_PROPERTIES.get(name)
    if getter is None:
        raise SpecialStringError(f"Unsupported URL property: {name}")
    return getter(url, urlsplit(url))


async def _resolve_data_key(args: list[str], context: SpecialStringContext) -> str:
    key = args[0] if args else ""
    if not _DATA_KEY_RE.match(key):
        raise SpecialStringError(
            "Data key special string must have at least one argument"
        )
    value = await context.get_external_data(key)
    return "" if value is None else str(value)


def _resolve_random_string(args: list[str]) -> str:
    if not args or not args[0]:
        return random_string()
    try:
        length = int(args[0])
    except ValueError as exc:
        raise SpecialStringError(
            f"Random string length must be an integer: {args[0]}"
        ) from exc
    return random_string(max(length, 1))


async def _resolve_current_url(args: list[str], context: SpecialStringContext) -> str:
    if not args or not args[0]:
        raise SpecialStringError("Current URL special string requires a URL property")
    property_name = args[0]
    if property_name not in _URL_PROPERTIES:
        raise SpecialStringError(f"Unsupported URL property: {property_name}")

    page_index = 0
    if len(args) > 1 and args[1]:
        try:
            page_index = int(args[1])
        except ValueError:
            page_index = -1
        if page_index < 0:
            context.logger.warning(
                "Invalid page index %r in current URL special string; using 0",
                args[1],
            )
            page_index = 0

    url = await context.get_page_url(page_index) if context.get_page_url else None
    if not url:
        context.logger.warning("No page found at index %s", page_index)
        return ""
    return get_url_property(url, property_name)


async def _resolve_token(
    token_type: str, args: list[str], context: SpecialStringContext
) -> str:
    if token_type == SpecialStringType.DATA_KEY.value:
        return await _resolve_data_key(args, context)
    if token_type == SpecialStringType.RANDOM_STRING.value:
        return _resolve_random_string(args)
    if token_type == SpecialStringType.CURRENT_URL.value:
        return await _resolve_current_url(args, context)
    raise SpecialStringError(f"Unknown special string type: {token_type}")


async def replace_special_strings(text: str, context: SpecialStringContext) -> str:
    """Replace every special string token in ``text``.

    Tokens are resolved one at a time, left to right; after each replacement
    the text is scanned again, so a resolved value that itself contains a
    token is expanded too. Each occurrence is resolved on its own, so two
    ``{{RandomString}}`` tokens yield two different strings.
    """

    while True:
        match = SPECIAL_STRING_PATTERN.search(text)
        if match is None:
            return text

        token_type = match.group(1).strip()
        raw_args = match.group(2)
        args = [arg.strip() for arg in raw_args.split(",")] if raw_args else []

        value = await _resolve_token(token_type, args, context)
        text = text.replace(match.group(0), value, 1)


__all__ = [
    "DEFAULT_RANDOM_STRING_LENGTH",
    "SPECIAL_STRING_PATTERN",
    "SpecialStringContext",
    "SpecialStringError",
    "SpecialStringType",
    "get_url_property",
    "random_string",
    "replace_special_strings",
]
