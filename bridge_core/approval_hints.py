"""Per-requester approval hints and pending-token selection."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping

from bridge_core.config import utc_now, write_json_atomic


PendingReader = Callable[[], list[dict[str, Any]]]


class HintStore:
    """Owner-keyed hint map persisted as one JSON document.

    Writes replace the whole document; concurrent writers are
    last-writer-wins per owner key.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def read_all(self) -> dict[str, dict[str, Any]]:
        if not self.path.exists():
            return {}
        try:
            loaded = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except json.JSONDecodeError:
            return {}
        return loaded if isinstance(loaded, dict) else {}

    def write_all(self, hints: dict[str, dict[str, Any]]) -> None:
        write_json_atomic(self.path, hints)

    def read(self, owner_key: str) -> dict[str, Any] | None:
        row = self.read_all().get(owner_key)
        return row if isinstance(row, dict) else None

    def write(self, owner_key: str, hint: dict[str, Any]) -> None:
        hints = self.read_all()
        hints[owner_key] = hint
        self.write_all(hints)

    def clear(self, owner_key: str) -> bool:
        hints = self.read_all()
        if owner_key not in hints:
            return False
        del hints[owner_key]
        self.write_all(hints)
        return True

    def has_any(self) -> bool:
        return bool(self.read_all())


def build_owner_key(requested_by: str = "", transport: Mapping[str, Any] | None = None) -> str:
    requester = str(requested_by or "").strip()
    user_id = str((transport or {}).get("userId") or "").strip()
    if requester and requester != "unknown":
        return requester
    if user_id:
        return user_id
    return "unknown"


def remember_last_approval_hint(
    store: HintStore,
    requested_by: str,
    request_id: str,
    capability: str = "",
    action: str = "",
    transport: Mapping[str, Any] | None = None,
) -> bool:
    owner_key = build_owner_key(requested_by, transport)
    req_id = str(request_id or "").strip()
    if not req_id:
        return False
    store.write(
        owner_key,
        {
            "owner_key": owner_key,
            "request_id": req_id,
            "capability": str(capability or "").strip(),
            "action": str(action or "").strip(),
            "updated_at": utc_now(),
        },
    )
    return True


def read_last_approval_hint(
    store: HintStore, requested_by: str, transport: Mapping[str, Any] | None = None
) -> dict[str, Any] | None:
    owner_key = build_owner_key(requested_by, transport)
    row = store.read(owner_key)
    if not row or not str(row.get("request_id") or "").strip():
        return None
    return {
        "owner_key": owner_key,
        "request_id": str(row.get("request_id")).strip(),
        "capability": str(row.get("capability") or "").strip(),
        "action": str(row.get("action") or "").strip(),
        "updated_at": str(row.get("updated_at") or "").strip(),
    }


def clear_last_approval_hint(
    store: HintStore, requested_by: str, transport: Mapping[str, Any] | None = None
) -> bool:
    return store.clear(build_owner_key(requested_by, transport))


def find_pending_by_request_id(
    request_id: str, rows: Iterable[dict[str, Any]]
) -> dict[str, Any] | None:
    req_id = str(request_id or "").strip()
    if not req_id:
        return None
    for row in rows:
        if str(row.get("request_id") or "").strip() == req_id:
            return row
    return None


def resolve_token_from_hint(
    store: HintStore,
    read_pending: PendingReader,
    requested_by: str,
    transport: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    hint = read_last_approval_hint(store, requested_by, transport)
    if not hint:
        return {"token": "", "row": None, "hint": None, "found": False}
    row = find_pending_by_request_id(hint["request_id"], read_pending())
    return {
        "token": str((row or {}).get("id") or "").strip(),
        "row": row,
        "hint": hint,
        "found": row is not None,
    }


def find_token_candidates(query: str, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    needle = str(query or "").strip()
    if not needle:
        return rows[:5]
    exact = [
        row
        for row in rows
        if str(row.get("request_id") or "").strip() == needle
        or str(row.get("id") or "").strip() == needle
    ]
    if exact:
        return exact
    partial = [
        row
        for row in rows
        if needle in str(row.get("request_id") or "") or needle in str(row.get("id") or "")
    ]
    return partial[:5]


def _timestamp(row: Mapping[str, Any]) -> float:
    raw = str(row.get("created_at") or row.get("updated_at") or "").strip()
    if not raw:
        return 0.0
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00")).timestamp()
    except ValueError:
        return 0.0


def sort_newest_first(rows: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    return sorted(rows, key=_timestamp, reverse=True)


def resolve_token_selection(
    query: str,
    requested_by: str,
    read_pending: PendingReader,
    transport: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Pick a pending token by query, preferring the requester's own rows."""
    pending = read_pending()
    query = str(query or "").strip()
    owner_key = build_owner_key(requested_by, transport)

    candidates = find_token_candidates(query, pending) if query else pending
    if not candidates:
        return {"token": "", "row": None, "candidates": [], "matched_by_requester": False}

    candidates = sort_newest_first(candidates)
    if owner_key != "unknown":
        scoped = [
            row for row in candidates if str(row.get("requested_by") or "").strip() == owner_key
        ]
        if scoped:
            return {
                "token": str(scoped[0].get("id") or "").strip(),
                "row": scoped[0],
                "candidates": scoped,
                "matched_by_requester": True,
            }

    row = candidates[0]
    return {
        "token": str(row.get("id") or "").strip(),
        "row": row,
        "candidates": candidates,
        "matched_by_requester": False,
    }


def merge_unique_lower(items: Iterable[Any]) -> list[str]:
    out: list[str] = []
    for item in items or []:
        key = str(item or "").strip().lower()
        if key and key not in out:
            out.append(key)
    return out


def resolve_approval_flags(
    token: str,
    provided: Iterable[Any],
    read_pending_token: Callable[[str], dict[str, Any] | None] | None = None,
) -> list[str]:
    """Required flags of the pending record first, then the caller's."""
    merged = merge_unique_lower(provided)
    key = str(token or "").strip()
    if not key or read_pending_token is None:
        return merged
    pending = read_pending_token(key) or {}
    required = merge_unique_lower(pending.get("required_flags") or [])
    return merge_unique_lower([*required, *merged])
