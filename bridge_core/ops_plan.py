"""PLAN-phase ops handlers: restart, file control and capabilities.

Handlers validate fields, look up risk and enqueue a PLAN record. They
never run the underlying operation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

from bridge_core.approval_hints import HintStore, remember_last_approval_hint
from bridge_core.capability_policy import (
    FILE_INTENT_ALIASES,
    build_capability_payload,
    default_capability_policy,
    file_intent_policy,
    normalize_capability_action,
    normalize_file_intent,
    normalize_option_flags,
)
from bridge_core.config import DEFAULT_RESTART_TARGETS, utc_now


@dataclass
class OpsCollaborators:
    """Host-provided queue, pending-store and hint access.

    `trigger_drain` may be None or a no-op; its failures are audited and
    swallowed.
    """

    enqueue: Callable[[dict[str, Any]], dict[str, Any]] | None = None
    read_pending: Callable[[], list[dict[str, Any]]] | None = None
    read_pending_token: Callable[[str], dict[str, Any] | None] | None = None
    trigger_drain: Callable[[], Any] | None = None
    hints: HintStore | None = None
    audit: Callable[[dict[str, Any]], None] | None = None
    read_status_snapshot: Callable[[], dict[str, Any]] | None = None

    def require(self, handler: str, *names: str) -> None:
        if any(getattr(self, name) is None for name in names):
            raise ValueError(f"{handler} dependencies are incomplete")

    def log(self, payload: dict[str, Any]) -> None:
        if self.audit is not None:
            self.audit({"ts": utc_now(), **payload})

    def drain(self) -> None:
        if self.trigger_drain is None:
            return
        try:
            self.trigger_drain()
        except Exception as exc:
            self.log({"status": "inline_drain_error", "error": str(exc)})

    def remember_hint(
        self,
        requested_by: str,
        request_id: str,
        capability: str,
        action: str,
        transport: dict[str, Any] | None,
    ) -> None:
        if self.hints is None:
            return
        try:
            remember_last_approval_hint(
                self.hints, requested_by, request_id, capability, action, transport
            )
        except OSError as exc:
            self.log(
                {"status": "hint_write_error", "request_id": request_id, "error": str(exc)}
            )


@dataclass
class OpsContext:
    collab: OpsCollaborators
    requested_by: str = ""
    transport: dict[str, Any] | None = None
    unified_approvals: bool = True
    restart_targets: dict[str, list[str]] = field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_RESTART_TARGETS.items()}
    )
    capability_policy: dict[str, dict[str, dict[str, Any]]] = field(
        default_factory=default_capability_policy
    )


def _failure(action: str, code: str, reply: str, **extra: Any) -> dict[str, Any]:
    return {
        "route": "ops",
        "templateValid": False,
        "success": False,
        "action": action,
        "errorCode": code,
        "telegramReply": reply,
        **extra,
    }


def resolve_restart_targets(
    target_key: str, restart_targets: dict[str, list[str]]
) -> list[str] | None:
    key = str(target_key or "").strip().lower()
    if key == "all":
        names: list[str] = []
        for values in restart_targets.values():
            names.extend(v for v in values if v not in names)
        return names
    if key not in restart_targets:
        return None
    value = restart_targets[key]
    return list(value) if isinstance(value, list) else [value]


def handle_restart_action(fields: dict[str, str], ctx: OpsContext) -> dict[str, Any]:
    ctx.collab.require("handle_restart_action", "enqueue")
    target_key = str(fields.get("대상") or "").strip().lower()
    targets = resolve_restart_targets(target_key, ctx.restart_targets)
    if not targets:
        supported = "/".join([*ctx.restart_targets.keys(), "all"])
        return _failure(
            "restart",
            "RESTART_TARGET_UNSUPPORTED",
            f"운영 대상은 {supported} 만 지원합니다.",
            error="지원하지 않는 대상입니다.",
        )

    policy = ctx.capability_policy.get("bot", {}).get("restart") or {}
    risk_tier = policy.get("risk_tier") or "MEDIUM"
    requires_approval = bool(policy.get("requires_approval")) and ctx.unified_approvals
    reason = str(fields.get("사유") or "").strip()
    queued = ctx.collab.enqueue(
        {
            "phase": "plan",
            "capability": "bot",
            "action": "restart",
            "requested_by": ctx.requested_by,
            "telegram_context": ctx.transport,
            "reason": reason,
            "payload": {"target": target_key, "targets": targets, "reason": reason},
            "risk_tier": risk_tier,
            "requires_approval": requires_approval,
            "required_flags": list(policy.get("required_flags") or []),
        }
    )
    if requires_approval:
        ctx.collab.remember_hint(
            ctx.requested_by, queued["requestId"], "bot", "restart", ctx.transport
        )

    follow_up = (
        "실행 전 승인이 필요합니다."
        if requires_approval
        else "호스트 작업 큐에서 순차 실행됩니다."
    )
    return {
        "route": "ops",
        "templateValid": True,
        "success": True,
        "queued": True,
        "phase": "plan",
        "action": "restart",
        "target": target_key,
        "targets": targets,
        "requestId": queued["requestId"],
        "riskTier": risk_tier,
        "requiresApproval": requires_approval,
        "telegramReply": f"운영 재시작 요청 접수: {queued['requestId']}\n{follow_up}",
    }


def handle_file_action(fields: dict[str, str], ctx: OpsContext) -> dict[str, Any]:
    ctx.collab.require("handle_file_action", "enqueue")
    intent = normalize_file_intent(fields.get("작업"))
    if not intent:
        return _failure(
            "file",
            "FILE_ACTION_REQUIRED",
            "파일 제어 작업이 필요합니다.\n지원 작업: " + ", ".join(FILE_INTENT_ALIASES),
        )

    file_table = ctx.capability_policy.get("file") or {}
    policy = file_table.get(intent) or file_intent_policy(intent)
    risk_tier = policy.get("risk_tier") or "MEDIUM"
    requires_approval = bool(policy.get("requires_approval")) and ctx.unified_approvals
    payload = {
        "path": str(fields.get("경로") or "").strip(),
        "target_path": str(fields.get("대상경로") or "").strip(),
        "pattern": str(fields.get("패턴") or "").strip(),
        "repository": str(fields.get("저장소") or "").strip(),
        "commit_message": str(fields.get("커밋메시지") or "").strip(),
        "options": normalize_option_flags(fields.get("옵션") or ""),
    }
    queued = ctx.collab.enqueue(
        {
            "phase": "plan",
            "capability": "file",
            "intent_action": intent,
            "action": intent,
            "requested_by": ctx.requested_by,
            "telegram_context": ctx.transport,
            "payload": payload,
            "risk_tier": risk_tier,
            "requires_approval": requires_approval,
            "required_flags": list(policy.get("required_flags") or []),
        }
    )
    if requires_approval:
        ctx.collab.remember_hint(
            ctx.requested_by, queued["requestId"], "file", intent, ctx.transport
        )

    mode = (
        "- 기본 모드: dry-run (실행 전 승인 필요)"
        if requires_approval
        else "- 기본 모드: dry-run (승인 토큰 없이 자동 실행)"
    )
    return {
        "route": "ops",
        "templateValid": True,
        "success": True,
        "queued": True,
        "phase": "plan",
        "action": "file",
        "capability": "file",
        "capabilityAction": intent,
        "intentAction": intent,
        "requestId": queued["requestId"],
        "riskTier": risk_tier,
        "requiresApproval": requires_approval,
        "telegramReply": "\n".join(
            [
                f"파일 제어 PLAN 요청 접수: {queued['requestId']}",
                f"- risk: {risk_tier}",
                mode,
            ]
        ),
    }


def handle_capability_action(
    capability: str, fields: dict[str, str], ctx: OpsContext
) -> dict[str, Any]:
    ctx.collab.require("handle_capability_action", "enqueue")
    action = normalize_capability_action(capability, fields.get("작업"))
    table = ctx.capability_policy.get(capability) or {}
    policy = table.get(action) if action else None
    if not policy:
        supported = ", ".join(table) if table else "(none)"
        return _failure(
            capability,
            "CAPABILITY_ACTION_REQUIRED",
            f"{capability} 작업이 필요합니다.\n지원 작업: {supported}",
        )

    payload = {
        **build_capability_payload(fields),
        "options": normalize_option_flags(fields.get("옵션") or ""),
    }
    if capability == "exec":
        command = str(
            fields.get("작업") or fields.get("명령") or fields.get("내용") or ""
        ).strip()
        if not command:
            return _failure(
                capability,
                "EXEC_COMMAND_REQUIRED",
                "실행 명령이 필요합니다. 예: 운영: 액션: 실행; 작업: ls -la",
            )
        payload["command"] = command

    requires_approval = bool(policy.get("requires_approval")) and ctx.unified_approvals
    queued = ctx.collab.enqueue(
        {
            "phase": "plan",
            "capability": capability,
            "action": action,
            "requested_by": ctx.requested_by,
            "telegram_context": ctx.transport,
            "reason": str(fields.get("사유") or "").strip(),
            "payload": payload,
            "risk_tier": policy.get("risk_tier"),
            "requires_approval": requires_approval,
            "required_flags": list(policy.get("required_flags") or []),
        }
    )
    if requires_approval:
        ctx.collab.remember_hint(
            ctx.requested_by, queued["requestId"], capability, action, ctx.transport
        )

    if not ctx.unified_approvals:
        note = "- 승인 토큰 정책이 비활성화되어 PLAN 검증 후 자동 실행됩니다."
    elif requires_approval:
        note = (
            "- 승인 대기로 접수됩니다. `운영: 액션: 승인`으로 실행, "
            "`운영: 액션: 거부`로 취소할 수 있습니다."
        )
    else:
        note = "- 저위험 작업으로 분류되어 PLAN 검증 후 호스트 runner가 즉시 실행합니다."

    return {
        "route": "ops",
        "templateValid": True,
        "success": True,
        "queued": True,
        "phase": "plan",
        "action": capability,
        "capability": capability,
        "capabilityAction": action,
        "requestId": queued["requestId"],
        "riskTier": policy.get("risk_tier"),
        "requiresApproval": requires_approval,
        "telegramReply": "\n".join(
            [
                f"{capability} {action.upper()} PLAN 요청 접수: {queued['requestId']}",
                f"- risk: {policy.get('risk_tier')}",
                note,
            ]
        ),
    }
