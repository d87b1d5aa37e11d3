"""
Versioned tenant document schema and its upgrade chain.

Every document written today carries ``"schemaVersion": 3``. Older files
carry no tag and are classified by shape:

- **v1**: a bare ``{"history": [...], "personality": "..."}`` document from
  before named contexts existed.
- **v2**: ``contexts``-shaped, possibly missing the economy fields
  (``dailyCredits``, ``purchasedCredits``, ``lastDailyReset``) and/or the
  lifetime stats (``totalCreditsUsed`` ...).
- **v3**: current shape, every field present.

Each upgrade is a pure function taking the version N dict to version N+1.
To add a field, bump ``SCHEMA_VERSION`` and append one function to
``UPGRADES``; nothing else branches on field absence.
"""

from __future__ import annotations

import copy
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from chatledger.models.session import SCHEMA_VERSION

Document = dict[str, Any]


@dataclass(frozen=True)
class UpgradeDefaults:
    """Values used to backfill fields a legacy document does not have."""

    daily_credits: int
    now_ms: int


Upgrade = Callable[[Document, UpgradeDefaults], Document]


def detect_version(doc: Document) -> int:
    """
    Return the schema version of *doc*.

    Raises:
        ValueError: If the version tag is not a positive integer.
    """
    if "schemaVersion" in doc:
        version = doc["schemaVersion"]
        if not isinstance(version, int) or isinstance(version, bool) or version < 1:
            raise ValueError(f"invalid schemaVersion {version!r}")
        return version
    if "contexts" not in doc:
        return 1
    return 2


def _v1_to_v2(doc: Document, defaults: UpgradeDefaults) -> Document:
    """Wrap a pre-context history into a single context named ``default``."""
    upgraded = {k: v for k, v in doc.items() if k not in ("history", "personality")}
    upgraded["contexts"] = {
        "default": {
            "history": doc.get("history") or [],
            "personality": doc.get("personality") or "",
        }
    }
    return upgraded


def _v2_to_v3(doc: Document, defaults: UpgradeDefaults) -> Document:
    """Backfill economy and lifetime-stat fields, then stamp the version tag."""
    upgraded = dict(doc)
    upgraded.setdefault("dailyCredits", defaults.daily_credits)
    upgraded.setdefault("purchasedCredits", 0)
    upgraded.setdefault("lastDailyReset", defaults.now_ms)
    upgraded.setdefault("totalCreditsUsed", 0)
    upgraded.setdefault("totalTextMessages", 0)
    upgraded.setdefault("totalImagesGenerated", 0)
    contexts = doc.get("contexts") or {}
    if not isinstance(contexts, dict):
        raise ValueError("contexts must be a JSON object")
    upgraded["contexts"] = {}
    for name, ctx in contexts.items():
        if not isinstance(ctx, dict):
            raise ValueError(f"context {name!r} must be a JSON object")
        upgraded["contexts"][name] = {
            "history": ctx.get("history") or [],
            "personality": ctx.get("personality") or "",
        }
    upgraded["schemaVersion"] = 3
    return upgraded


UPGRADES: dict[int, Upgrade] = {
    1: _v1_to_v2,
    2: _v2_to_v3,
}
"""Maps version N to the function producing version N+1."""


def migrate(doc: Document, defaults: UpgradeDefaults) -> tuple[Document, int]:
    """
    Upgrade *doc* to the current schema version.

    The input is never mutated. A current-version document is returned as an
    equal copy, so running ``migrate`` twice is the same as running it once.

    Args:
        doc: Parsed JSON object from a tenant file.
        defaults: Backfill values for fields missing from legacy shapes.

    Returns:
        ``(upgraded_doc, original_version)``.

    Raises:
        ValueError: If *doc* is not a JSON object, or its version is newer
            than this package understands.
    """
    if not isinstance(doc, dict):
        raise ValueError(f"expected a JSON object, got {type(doc).__name__}")
    original = detect_version(doc)
    if original > SCHEMA_VERSION:
        raise ValueError(f"unsupported schema version {original} (newest known: {SCHEMA_VERSION})")

    version = original
    upgraded = copy.deepcopy(doc)
    while version < SCHEMA_VERSION:
        upgraded = UPGRADES[version](upgraded, defaults)
        version += 1
    return upgraded, original
