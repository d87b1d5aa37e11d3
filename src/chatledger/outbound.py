"""Outgoing chat-platform payload helpers."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any


def with_auth_token(payload: Mapping[str, Any], token: str) -> dict[str, Any]:
    """
    Return a copy of *payload* carrying the ``auth_token`` the platform requires.

    The input mapping is left untouched, so the same base payload can be
    reused across requests with different tokens.

    Raises:
        ValueError: If *token* is empty.
    """
    if not token:
        raise ValueError("auth token must not be empty")
    return {**payload, "auth_token": token}
