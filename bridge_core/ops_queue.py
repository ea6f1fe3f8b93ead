"""File-backed ops command queue and approval token store.

Layout under the commands root:

    outbox/<ns>_<request_id>.json        enqueued PLAN/EXECUTE records
    state/processing/                    records claimed by a drain
    state/pending/<token>.json           approvals waiting for a decision
    state/consumed/<token>.json          decided approvals
    state/ready/                         records handed to the host executor
    state/completed/                     records finished inside the drain
    results.jsonl                        one line per drained record

Nothing here executes an operation; `drain_inline` only moves records
between these directories.
"""

from __future__ import annotations

import json
import os
import re
import secrets
import time
from pathlib import Path
from typing import Any

from bridge_core.config import append_audit, utc_now, write_json_atomic


TOKEN_RE = re.compile(r"^apv_[a-f0-9]{16}$")


def outbox_dir(root: Path) -> Path:
    return root / "outbox"


def state_dir(root: Path, name: str) -> Path:
    return root / "state" / name


def results_path(root: Path) -> Path:
    return root / "results.jsonl"


def ensure_layout(root: Path) -> None:
    outbox_dir(root).mkdir(parents=True, exist_ok=True)
    for name in ("processing", "pending", "consumed", "ready", "completed"):
        state_dir(root, name).mkdir(parents=True, exist_ok=True)


def make_request_id(prefix: str = "opsfc") -> str:
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(3)}"


def make_token() -> str:
    return f"apv_{secrets.token_hex(8)}"


def read_json(path: Path) -> dict[str, Any] | None:
    if not path.exists():
        return None
    try:
        loaded = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError:
        return None
    return loaded if isinstance(loaded, dict) else None


def enqueue_command(root: Path, command: dict[str, Any]) -> dict[str, Any]:
    ensure_layout(root)
    request_id = str(command.get("request_id") or make_request_id()).strip()
    payload = {
        "schema_version": "1.0",
        "created_at": utc_now(),
        **command,
        "request_id": request_id,
    }
    safe_id = re.sub(r"[^a-zA-Z0-9._-]+", "_", request_id)
    file_path = outbox_dir(root) / f"{time.time_ns()}_{safe_id}.json"
    write_json_atomic(file_path, payload)
    return {"requestId": request_id, "filePath": str(file_path), "payload": payload}


def list_outbox(root: Path) -> list[Path]:
    ensure_layout(root)
    return sorted(outbox_dir(root).glob("*.json"))


def token_path(root: Path, token: str) -> Path:
    key = str(token or "").strip().lower()
    if not TOKEN_RE.match(key):
        raise ValueError(f"Invalid approval token format: {token}")
    return state_dir(root, "pending") / f"{key}.json"


def consumed_token_path(root: Path, token: str) -> Path:
    return state_dir(root, "consumed") / f"{str(token).strip().lower()}.json"


def create_approval_token(root: Path, plan: dict[str, Any]) -> dict[str, Any]:
    ensure_layout(root)
    token = make_token()
    record = {
        "schema_version": "1.0",
        "id": token,
        "request_id": str(plan.get("request_id") or "").strip(),
        "requested_by": str(plan.get("requested_by") or "").strip() or "unknown",
        "capability": str(plan.get("capability") or "").strip(),
        "action": str(plan.get("action") or plan.get("intent_action") or "").strip(),
        "risk_tier": str(plan.get("risk_tier") or "HIGH"),
        "requires_approval": True,
        "required_flags": list(plan.get("required_flags") or []),
        "payload": plan.get("payload") or {},
        "created_at": utc_now(),
        "consumed_at": None,
        "decision": None,
        "execution_request_id": None,
    }
    write_json_atomic(token_path(root, token), record)
    return record


def read_pending_token(root: Path, token: str) -> dict[str, Any] | None:
    try:
        path = token_path(root, token)
    except ValueError:
        return None
    return read_json(path)


def list_pending_approvals(root: Path) -> list[dict[str, Any]]:
    pending = state_dir(root, "pending")
    if not pending.exists():
        return []
    rows = []
    for path in sorted(pending.glob("apv_*.json")):
        row = read_json(path)
        if row and not row.get("consumed_at"):
            rows.append(row)
    return rows


def consume_approval(
    root: Path,
    token: str,
    decision: str,
    consumed_by: str = "",
    execution_request_id: str = "",
) -> dict[str, Any]:
    if decision not in {"approve", "deny"}:
        raise ValueError("decision must be one of: approve, deny")
    pending_path = token_path(root, token)
    record = read_json(pending_path)
    if record is None:
        if consumed_token_path(root, token).exists():
            raise ValueError(f"Approval token already consumed: {token}")
        raise KeyError(f"Approval token not found: {token}")

    updated = {
        **record,
        "consumed_at": utc_now(),
        "consumed_by": str(consumed_by or "").strip() or "unknown",
        "decision": decision,
        "execution_request_id": str(execution_request_id or "").strip() or None,
    }
    write_json_atomic(consumed_token_path(root, token), updated)
    pending_path.unlink()
    return updated


def claim_next(root: Path) -> tuple[dict[str, Any] | None, Path] | None:
    """Move the oldest outbox record to processing; None when empty."""
    for path in list_outbox(root):
        claim_path = state_dir(root, "processing") / f"{path.name}.processing"
        try:
            os.replace(path, claim_path)
        except FileNotFoundError:
            continue
        return read_json(claim_path), claim_path
    return None


def _finish(root: Path, claim_path: Path, target: str, record: dict[str, Any] | None) -> Path:
    base = claim_path.name.removesuffix(".processing")
    dest = state_dir(root, target) / base
    if record is not None:
        write_json_atomic(dest, record)
        claim_path.unlink()
    else:
        os.replace(claim_path, dest.with_suffix(".invalid"))
    return dest


def drain_inline(root: Path, limit: int = 50) -> dict[str, Any]:
    """Process outbox records until empty or `limit` is reached."""
    ensure_layout(root)
    summary: dict[str, Any] = {
        "claimed": 0,
        "pending_created": [],
        "ready": [],
        "failed": [],
        "denied": [],
    }

    for _ in range(limit):
        claim = claim_next(root)
        if claim is None:
            break
        record, claim_path = claim
        summary["claimed"] += 1

        if record is None:
            _finish(root, claim_path, "completed", None)
            summary["failed"].append({"file": claim_path.name, "error": "invalid record"})
            continue

        request_id = record.get("request_id", "")
        phase = str(record.get("phase") or "plan").lower()
        result: dict[str, Any] = {"request_id": request_id, "phase": phase}

        if phase == "plan" and record.get("requires_approval"):
            pending = create_approval_token(root, record)
            _finish(root, claim_path, "completed", {**record, "approval_token": pending["id"]})
            summary["pending_created"].append({"request_id": request_id, "token": pending["id"]})
            result.update({"ok": True, "status": "approval_pending", "token": pending["id"]})
        elif phase == "plan":
            _finish(root, claim_path, "ready", record)
            summary["ready"].append(request_id)
            result.update({"ok": True, "status": "ready"})
        elif phase == "execute":
            payload = record.get("payload") or {}
            token = str(payload.get("token") or "")
            decision = str(payload.get("decision") or "approve")
            try:
                consumed = consume_approval(
                    root,
                    token,
                    decision,
                    consumed_by=str(record.get("requested_by") or ""),
                    execution_request_id=request_id,
                )
            except (KeyError, ValueError) as exc:
                _finish(root, claim_path, "completed", {**record, "error": str(exc)})
                summary["failed"].append({"request_id": request_id, "error": str(exc)})
                result.update({"ok": False, "status": "failed", "error": str(exc)})
            else:
                if decision == "approve":
                    _finish(root, claim_path, "ready", {**record, "approved_plan": consumed})
                    summary["ready"].append(request_id)
                    result.update({"ok": True, "status": "ready"})
                else:
                    _finish(root, claim_path, "completed", {**record, "denied_plan": consumed})
                    summary["denied"].append(request_id)
                    result.update({"ok": True, "status": "denied"})
        else:
            error = f"unknown phase: {phase}"
            _finish(root, claim_path, "completed", {**record, "error": error})
            summary["failed"].append({"request_id": request_id, "error": error})
            result.update({"ok": False, "status": "failed", "error": error})

        append_audit(results_path(root), {"finished_at": utc_now(), **result})

    return summary
