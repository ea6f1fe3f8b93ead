"""APPROVE / DENY resolution against pending approval tokens."""

from __future__ import annotations

from typing import Any

from bridge_core.approval_hints import (
    clear_last_approval_hint,
    resolve_approval_flags,
    resolve_token_from_hint,
    resolve_token_selection,
)
from bridge_core.capability_policy import normalize_file_intent, normalize_option_flags
from bridge_core.ops_plan import OpsContext


def resolve_approval_selection(fields: dict[str, str], ctx: OpsContext) -> dict[str, Any]:
    """Resolve a token by explicit field, then the requester's hint, then query.

    Returns `token` (empty when nothing matched), `waiting_hint` (the
    hinted request id whose token is not pending yet) and `selection`.
    """
    collab = ctx.collab
    query = str(fields.get("식별자") or fields.get("작업") or fields.get("내용") or "").strip()
    explicit = str(fields.get("토큰") or "").strip()
    implicit = not explicit and not query

    if implicit:
        collab.drain()

    hinted: dict[str, Any] = {"token": "", "row": None, "hint": None, "found": False}
    if implicit and collab.hints is not None:
        hinted = resolve_token_from_hint(
            collab.hints, collab.read_pending, ctx.requested_by, ctx.transport
        )

    if explicit:
        selection = {"token": explicit, "row": None, "candidates": [], "matched_by_requester": True}
    elif hinted["found"]:
        selection = {
            "token": hinted["token"],
            "row": hinted["row"],
            "candidates": [hinted["row"]],
            "matched_by_requester": True,
        }
    else:
        selection = resolve_token_selection(
            query, ctx.requested_by, collab.read_pending, ctx.transport
        )

    waiting_hint = ""
    if hinted["hint"] and not hinted["found"]:
        waiting_hint = hinted["hint"]["request_id"]
    return {
        "token": str(selection.get("token") or "").strip(),
        "waiting_hint": waiting_hint,
        "selection": selection,
    }


def _token_required(action: str, waiting_hint: str, retry_word: str, empty_reply: str) -> dict[str, Any]:
    if waiting_hint:
        reply = (
            f"방금 요청({waiting_hint}) 승인 토큰을 준비 중입니다. "
            f"잠시 후 `{retry_word}`을(를) 다시 보내주세요."
        )
    else:
        reply = empty_reply
    return {
        "route": "ops",
        "templateValid": False,
        "success": False,
        "action": action,
        "errorCode": "TOKEN_REQUIRED",
        "telegramReply": reply,
    }


def _request_line(selection: dict[str, Any]) -> str:
    row = selection.get("row") or {}
    request_id = str(row.get("request_id") or "").strip()
    return f"- request: {request_id}" if request_id else ""


def handle_approve_action(fields: dict[str, str], ctx: OpsContext) -> dict[str, Any]:
    ctx.collab.require("handle_approve_action", "enqueue", "read_pending")
    if not ctx.unified_approvals:
        return {
            "route": "ops",
            "templateValid": True,
            "success": True,
            "action": "approve",
            "telegramReply": "승인 토큰 제도는 비활성화되어 있습니다. 실행 요청은 자동 처리됩니다.",
        }

    provided = normalize_option_flags(fields.get("옵션") or "")
    resolved = resolve_approval_selection(fields, ctx)
    token = resolved["token"]
    if not token:
        return _token_required(
            "approve", resolved["waiting_hint"], "승인", "현재 승인 대기 중인 요청이 없습니다."
        )

    flags = resolve_approval_flags(token, provided, ctx.collab.read_pending_token)
    queued = ctx.collab.enqueue(
        {
            "phase": "execute",
            "intent_action": normalize_file_intent(fields.get("작업")) or "execute",
            "requested_by": ctx.requested_by,
            "telegram_context": ctx.transport,
            "payload": {"token": token, "approval_flags": flags, "decision": "approve"},
        }
    )
    if ctx.collab.hints is not None:
        clear_last_approval_hint(ctx.collab.hints, ctx.requested_by, ctx.transport)
    ctx.collab.drain()

    flag_text = " ".join(f"--{flag}" for flag in flags) if flags else "(none)"
    lines = [
        "승인 반영 완료. 실행을 시작했습니다.",
        _request_line(resolved["selection"]),
        f"- flags: {flag_text}",
        f"- execution: {queued['requestId']}",
    ]
    return {
        "route": "ops",
        "templateValid": True,
        "success": True,
        "queued": True,
        "phase": "execute",
        "action": "approve",
        "requestId": queued["requestId"],
        "token": token,
        "approvalFlags": flags,
        "telegramReply": "\n".join(line for line in lines if line),
    }


def handle_deny_action(fields: dict[str, str], ctx: OpsContext) -> dict[str, Any]:
    ctx.collab.require("handle_deny_action", "enqueue", "read_pending")
    if not ctx.unified_approvals:
        return {
            "route": "ops",
            "templateValid": True,
            "success": True,
            "action": "deny",
            "telegramReply": "승인 토큰 제도는 비활성화되어 있어 거부할 토큰이 없습니다.",
        }

    resolved = resolve_approval_selection(fields, ctx)
    token = resolved["token"]
    if not token:
        return _token_required(
            "deny", resolved["waiting_hint"], "거부", "현재 거부할 승인 대기 요청이 없습니다."
        )

    queued = ctx.collab.enqueue(
        {
            "phase": "execute",
            "intent_action": "execute",
            "requested_by": ctx.requested_by,
            "telegram_context": ctx.transport,
            "payload": {"token": token, "decision": "deny"},
        }
    )
    if ctx.collab.hints is not None:
        clear_last_approval_hint(ctx.collab.hints, ctx.requested_by, ctx.transport)
    ctx.collab.drain()

    lines = [
        "승인 거부 반영 완료.",
        _request_line(resolved["selection"]),
        f"- execution: {queued['requestId']}",
    ]
    return {
        "route": "ops",
        "templateValid": True,
        "success": True,
        "queued": True,
        "phase": "execute",
        "action": "deny",
        "requestId": queued["requestId"],
        "token": token,
        "decision": "deny",
        "telegramReply": "\n".join(line for line in lines if line),
    }
