"""Ops command entry: template parse, action dispatch and batching."""

from __future__ import annotations

import re
from typing import Any, Callable

from bridge_core.capability_policy import normalize_ops_action
from bridge_core.ops_approvals import handle_approve_action, handle_deny_action
from bridge_core.ops_plan import (
    OpsContext,
    handle_capability_action,
    handle_file_action,
    handle_restart_action,
    resolve_restart_targets,
)
from bridge_core.ops_status import build_status_reply, rows_from_snapshot
from bridge_core.templates import parse_structured_command


_OPS_PREFIX_RE = re.compile(r"^\s*(?:운영|ops)\s*[:：]\s*", re.IGNORECASE)
_ACTION_MARKER_RE = re.compile(r"(?:^|[;\n])\s*(?:액션|action)\s*[:：]", re.IGNORECASE)

CAPABILITY_FAMILIES = {"exec", "mail", "schedule", "photo", "browser", "bot"}


def split_batch_payloads(payload_text: str) -> list[str]:
    """Split a multi-line ops payload into per-command chunks.

    A line starting with the ops prefix opens a new chunk; other lines are
    continuation lines. Anything that is not a batch of two or more
    `액션:` commands comes back whole as a single chunk.
    """
    raw = str(payload_text or "").replace("\r\n", "\n").replace("\r", "\n").strip()
    if not raw:
        return []

    lines = [line.strip() for line in raw.split("\n") if line.strip()]
    if len(lines) <= 1:
        return [raw]

    chunks: list[str] = []
    current = ""
    for line in lines:
        stripped = _OPS_PREFIX_RE.sub("", line, count=1).strip()
        if stripped and stripped != line:
            if current.strip():
                chunks.append(current.strip())
            current = stripped
        elif not current:
            current = line
        else:
            current += f"\n{line}"
    if current.strip():
        chunks.append(current.strip())

    if len(chunks) > 1 and all(_ACTION_MARKER_RE.search(chunk) for chunk in chunks):
        return chunks
    return [raw]


def handle_status_action(fields: dict[str, str], ctx: OpsContext) -> dict[str, Any]:
    target_key = str(fields.get("대상") or "all").strip().lower()
    targets = resolve_restart_targets(target_key, ctx.restart_targets)
    if not targets:
        supported = "/".join([*ctx.restart_targets.keys(), "all"])
        return {
            "route": "ops",
            "templateValid": False,
            "success": False,
            "action": "status",
            "errorCode": "STATUS_TARGET_UNSUPPORTED",
            "telegramReply": f"운영 대상은 {supported} 만 지원합니다.",
        }
    snapshot: dict[str, Any] = {}
    if ctx.collab.read_status_snapshot is not None:
        snapshot = ctx.collab.read_status_snapshot() or {}
    rows = rows_from_snapshot(snapshot, targets)
    return {
        "route": "ops",
        "templateValid": True,
        "success": True,
        "action": "status",
        "target": target_key,
        "rows": rows,
        "telegramReply": build_status_reply(rows, str(snapshot.get("updated_at") or "")),
    }


def run_ops_single(payload_text: str, ctx: OpsContext) -> dict[str, Any]:
    parsed = parse_structured_command("ops", payload_text)
    if not parsed["ok"]:
        return {
            "route": "ops",
            "templateValid": False,
            "success": False,
            "errorCode": "OPS_TEMPLATE_INVALID",
            "missing": parsed.get("missing", []),
            "telegramReply": parsed.get("telegramReply", ""),
        }

    fields = parsed["fields"]
    action = normalize_ops_action(fields.get("액션"))
    if action == "restart":
        return handle_restart_action(fields, ctx)
    if action == "file":
        return handle_file_action(fields, ctx)
    if action == "approve":
        return handle_approve_action(fields, ctx)
    if action == "deny":
        return handle_deny_action(fields, ctx)
    if action == "status":
        return handle_status_action(fields, ctx)
    if action in CAPABILITY_FAMILIES:
        return handle_capability_action(action, fields, ctx)
    return {
        "route": "ops",
        "templateValid": False,
        "success": False,
        "action": str(fields.get("액션") or ""),
        "errorCode": "OPS_ACTION_UNSUPPORTED",
        "telegramReply": (
            "지원 액션: 재시작, 파일, 실행, 승인, 거부, 상태, 메일, 일정, 사진, 브라우저, 봇"
        ),
    }


def _batch_line(index: int, item: dict[str, Any]) -> str:
    capability = str(item.get("capability") or item.get("action") or "ops").strip()
    capability_action = str(item.get("capabilityAction") or "").strip()
    label = f"{capability} {capability_action.upper()}" if capability_action else capability
    request_id = str(item.get("requestId") or "").strip()
    if request_id:
        details = []
        if item.get("riskTier"):
            details.append(f"risk={item['riskTier']}")
        if isinstance(item.get("requiresApproval"), bool):
            details.append(f"approval={'required' if item['requiresApproval'] else 'auto'}")
        suffix = f" ({', '.join(details)})" if details else ""
        return f"{index}. {label}: {request_id}{suffix}"
    if item.get("success") is False:
        reason = str(
            item.get("error") or item.get("errorCode") or item.get("telegramReply") or "unknown error"
        ).strip()
        return f"{index}. 실패: {label} - {reason}"
    return f"{index}. {label}"


def run_ops_command(
    payload_text: str,
    ctx: OpsContext,
    run_single: Callable[[str, OpsContext], dict[str, Any]] = run_ops_single,
) -> dict[str, Any]:
    chunks = split_batch_payloads(payload_text)
    if len(chunks) <= 1:
        return run_single(chunks[0] if chunks else payload_text, ctx)

    items = [run_single(chunk, ctx) for chunk in chunks]
    lines = [f"운영 배치 요청 접수: {len(items)}건"]
    lines += [_batch_line(i, item) for i, item in enumerate(items, start=1)]
    return {
        "route": "ops",
        "templateValid": all(item.get("templateValid") is not False for item in items),
        "success": all(item.get("success") is not False for item in items),
        "batch": True,
        "items": items,
        "requestIds": [item["requestId"] for item in items if item.get("requestId")],
        "telegramReply": "\n".join(lines),
    }
