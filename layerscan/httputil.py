"""Helpers for HTTP request handling."""

from __future__ import annotations

import ipaddress
from typing import Mapping, Sequence, Union

HeaderValue = Union[str, Sequence[str]]


def _header(headers: Mapping[str, HeaderValue], name: str) -> str:
    """Return the first value of a header, matching its name case-insensitively."""
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() != wanted:
            continue
        if isinstance(value, str):
            return value
        return next(iter(value), "")
    return ""


def _is_ip(text: str) -> bool:
    if "%" in text:
        return False
    try:
        ipaddress.ip_address(text)
    except ValueError:
        return False
    return True


def get_client_addr(remote_addr: str, headers: Mapping[str, HeaderValue]) -> str:
    """Return the first X-Forwarded-For address if it is a valid IP, else ``remote_addr``."""
    forwarded = _header(headers, "X-Forwarded-For")
    if not forwarded:
        return remote_addr
    first = forwarded.split(",")[0]
    if _is_ip(first):
        return first.strip()
    return remote_addr