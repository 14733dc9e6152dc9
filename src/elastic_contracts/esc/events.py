"""Helpers for reading ledger completion events."""

from __future__ import annotations

from elastic_contracts.ledger import LedgerEvent

ANALYSIS_EVENT = "analysis"
UPDATE_DATA_EVENT = "updateData"
OWNER_FIELD = "escKey"


def analysis_id_of(event: LedgerEvent) -> int | None:
    info = event.get("info")
    try:
        return int(info[0][0])
    except (TypeError, ValueError, IndexError, KeyError):
        return None


def update_id_of(event: LedgerEvent) -> int | None:
    try:
        return int(event.get("updateDataID"))
    except (TypeError, ValueError):
        return None


def owned_by(event: LedgerEvent, key: str) -> bool:
    """Events without an owner tag are accepted by every instance."""
    owner = event.get(OWNER_FIELD)
    return owner is None or str(owner) == key
