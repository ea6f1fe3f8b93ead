#!/usr/bin/env python3
"""Bridge command dispatcher and CLI."""

from __future__ import annotations

import argparse
import json
import sys
from typing import Any, Callable

from bridge_core import ops_queue
from bridge_core.approval_hints import HintStore
from bridge_core.config import BridgeConfig, append_audit, load_config, load_policy, utc_now
from bridge_core.lane_policy import (
    evaluate_api_key_lane_access,
    decide_lane,
    load_budget_policy,
    load_routing_policy,
)
from bridge_core.ops_batch import handle_status_action, run_ops_command
from bridge_core.ops_plan import OpsCollaborators, OpsContext
from bridge_core.router import DEFAULT_PREFIXES, ClassifiedCommand, RoleContext, classify
from bridge_core.routes import Route
from bridge_core.templates import parse_structured_command


ROUTE_LABELS = {
    "word": "단어",
    "memo": "메모",
    "news": "소식",
    "finance": "가계",
    "todo": "투두",
    "routine": "루틴",
    "workout": "운동",
    "media": "콘텐츠",
    "place": "식당",
    "report": "리포트",
    "prompt": "프롬프트",
    "link": "링크",
}


def file_collaborators(config: BridgeConfig) -> OpsCollaborators:
    root = config.commands_root

    def drain() -> dict[str, Any]:
        return ops_queue.drain_inline(root)

    return OpsCollaborators(
        enqueue=lambda record: ops_queue.enqueue_command(root, record),
        read_pending=lambda: ops_queue.list_pending_approvals(root),
        read_pending_token=lambda token: ops_queue.read_pending_token(root, token),
        trigger_drain=drain if config.inline_worker else None,
        hints=HintStore(config.hints_path),
        audit=lambda payload: append_audit(config.audit_log, payload),
        read_status_snapshot=lambda: load_policy(config.status_snapshot_path),
    )


def no_prefix_reply() -> str:
    prefixes = ", ".join(prefixes[0] for _, prefixes in DEFAULT_PREFIXES)
    return f"명령 접두어를 찾지 못했습니다.\n사용 가능: {prefixes}"


class Dispatcher:
    """Classify, gate, lane-tag and hand off a single text command."""

    ROUTE_HANDLERS: dict[Route, str] = {
        Route.WORD: "handle_forward",
        Route.MEMO: "handle_forward",
        Route.NEWS: "handle_forward",
        Route.FINANCE: "handle_forward",
        Route.TODO: "handle_forward",
        Route.ROUTINE: "handle_forward",
        Route.WORKOUT: "handle_forward",
        Route.MEDIA: "handle_forward",
        Route.PLACE: "handle_forward",
        Route.REPORT: "handle_forward",
        Route.PROMPT: "handle_forward",
        Route.LINK: "handle_forward",
        Route.WORK: "handle_template",
        Route.INSPECT: "handle_template",
        Route.DEPLOY: "handle_template",
        Route.PROJECT: "handle_template",
        Route.STATUS: "handle_status",
        Route.OPS: "handle_ops",
        Route.NONE: "handle_none",
        Route.BLOCKED: "handle_blocked",
    }

    def __init__(self, config: BridgeConfig, collab: OpsCollaborators | None = None):
        self.config = config
        self.collab = collab if collab is not None else file_collaborators(config)

    def approval_pending(self) -> bool:
        if self.collab.read_pending is not None and self.collab.read_pending():
            return True
        return self.collab.hints is not None and self.collab.hints.has_any()

    def role_context(self) -> RoleContext:
        return RoleContext(
            is_hub=self.config.is_hub,
            allowed_routes=self.config.allowed_routes,
            block_hint=self.config.block_hint,
            nl_routing=dict(self.config.nl_routing),
            command_prefixes=dict(self.config.command_prefixes),
            approval_pending=self.approval_pending(),
        )

    def ops_context(self, requested_by: str, transport: dict[str, Any] | None) -> OpsContext:
        ctx = OpsContext(
            collab=self.collab,
            requested_by=requested_by,
            transport=transport,
            unified_approvals=self.config.unified_approvals,
            restart_targets=self.config.restart_targets,
        )
        if self.config.capability_policy is not None:
            ctx.capability_policy = self.config.capability_policy
        return ctx

    def lane_for(
        self,
        command: ClassifiedCommand,
        template_fields: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        decision = decide_lane(
            command.route,
            command.payload,
            policy=load_routing_policy(self.config.routing_policy_path),
            budget_policy=load_budget_policy(self.config.budget_config_path),
            env=self.config.runtime_env(),
            route_hint=command.inferred_by,
            template_fields=template_fields,
        )
        return decision.to_dict()

    def dispatch(
        self,
        text: str,
        requested_by: str = "",
        transport: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        audit_payload: dict[str, Any] = {"ts": utc_now(), "requested_by": requested_by}
        try:
            command = classify(text, self.role_context())
            audit_payload["route"] = command.route
            audit_payload["inferred_by"] = command.inferred_by

            handler: Callable[..., dict[str, Any]] = getattr(
                self, self.ROUTE_HANDLERS[Route(command.route)]
            )
            result = handler(command, requested_by, transport)
            result.setdefault("route", command.route)
            result["inferredBy"] = command.inferred_by

            if result.get("apiBlocked"):
                audit_payload["status"] = "lane_blocked"
            elif command.blocked:
                audit_payload["status"] = "blocked"
            else:
                audit_payload["status"] = "ok" if result.get("success") else "failed"
            if result.get("requestId"):
                audit_payload["request_id"] = result["requestId"]
            append_audit(self.config.audit_log, audit_payload)
            return result
        except Exception as exc:
            audit_payload["status"] = "error"
            audit_payload["error"] = str(exc)
            append_audit(self.config.audit_log, audit_payload)
            raise

    def tag_lane(self, result: dict[str, Any], lane: dict[str, Any]) -> dict[str, Any]:
        result.update(
            {
                "apiLane": lane["apiLane"],
                "apiAuthMode": lane["authMode"],
                "apiLaneReason": lane["reason"],
                "apiBlocked": lane["blocked"],
                "apiBlockReason": lane["blockReason"],
                "apiFallbackLane": lane["fallbackLane"],
            }
        )
        if lane["blocked"]:
            result["telegramReply"] = (
                f"{result.get('telegramReply', '')}\n"
                f"- API lane 차단: {lane['blockReason']} (대체: {lane['fallbackLane']})"
            ).strip()
        return result

    def handle_forward(
        self, command: ClassifiedCommand, requested_by: str, transport: dict[str, Any] | None
    ) -> dict[str, Any]:
        label = ROUTE_LABELS.get(command.route, command.route)
        result = {
            "route": command.route,
            "templateValid": True,
            "success": bool(command.payload.strip()),
            "payload": command.payload,
            "telegramReply": (
                f"{label} 요청 접수" if command.payload.strip() else f"{label} 내용이 비어 있습니다."
            ),
        }
        return self.tag_lane(result, self.lane_for(command))

    def handle_template(
        self, command: ClassifiedCommand, requested_by: str, transport: dict[str, Any] | None
    ) -> dict[str, Any]:
        parsed = parse_structured_command(command.route, command.payload)
        result = {
            "route": command.route,
            "templateValid": parsed["ok"],
            "success": parsed["ok"],
            "payload": command.payload,
            "telegramReply": parsed.get("telegramReply", ""),
        }
        if parsed["ok"]:
            result["normalizedInstruction"] = parsed["normalizedInstruction"]
            result["needsApproval"] = parsed["needsApproval"]
        else:
            result["missing"] = parsed.get("missing", [])
        return self.tag_lane(result, self.lane_for(command, parsed.get("fields") or {}))

    def handle_status(
        self, command: ClassifiedCommand, requested_by: str, transport: dict[str, Any] | None
    ) -> dict[str, Any]:
        ctx = self.ops_context(requested_by, transport)
        result = handle_status_action({"대상": command.payload.strip() or "all"}, ctx)
        result["route"] = command.route
        return self.tag_lane(result, self.lane_for(command))

    def handle_ops(
        self, command: ClassifiedCommand, requested_by: str, transport: dict[str, Any] | None
    ) -> dict[str, Any]:
        result = run_ops_command(command.payload, self.ops_context(requested_by, transport))
        return self.tag_lane(result, self.lane_for(command))

    def handle_none(
        self, command: ClassifiedCommand, requested_by: str, transport: dict[str, Any] | None
    ) -> dict[str, Any]:
        result = {
            "route": command.route,
            "templateValid": False,
            "success": False,
            "payload": command.payload,
            "telegramReply": no_prefix_reply(),
        }
        return self.tag_lane(result, self.lane_for(command))

    def handle_blocked(
        self, command: ClassifiedCommand, requested_by: str, transport: dict[str, Any] | None
    ) -> dict[str, Any]:
        return {
            "route": command.route,
            "templateValid": False,
            "success": False,
            "requestedRoute": command.requested_route,
            "payload": command.payload,
            "telegramReply": command.hint,
        }


_missing_handlers = [route.value for route in Route if route not in Dispatcher.ROUTE_HANDLERS]
if _missing_handlers:
    raise RuntimeError(f"Routes without a dispatch handler: {', '.join(_missing_handlers)}")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Bridge command dispatcher")
    sub = parser.add_subparsers(dest="command", required=True)

    auto_parser = sub.add_parser("auto", help="Classify and dispatch one command")
    auto_parser.add_argument("text")
    auto_parser.add_argument("--requested-by", default="")
    auto_parser.add_argument("--user-id", default="")

    classify_parser = sub.add_parser("classify", help="Classify text without dispatching")
    classify_parser.add_argument("text")

    lane_parser = sub.add_parser("lane", help="Decide the upstream lane for a route")
    lane_parser.add_argument("--route", required=True)
    lane_parser.add_argument("--text", default="")
    lane_parser.add_argument("--hint", default="")

    sub.add_parser("lane-access", help="Evaluate direct-credential lane guards")
    sub.add_parser("hints", help="Dump the approval hint store")
    sub.add_parser("drain", help="Run the inline queue drain once")

    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        config = load_config()

        if args.command == "auto":
            transport = {"userId": args.user_id} if args.user_id else None
            out = Dispatcher(config).dispatch(args.text, args.requested_by, transport)
        elif args.command == "classify":
            dispatcher = Dispatcher(config)
            out = classify(args.text, dispatcher.role_context()).to_dict()
        elif args.command == "lane":
            out = decide_lane(
                args.route,
                args.text,
                policy=load_routing_policy(config.routing_policy_path),
                budget_policy=load_budget_policy(config.budget_config_path),
                env=config.runtime_env(),
                route_hint=args.hint,
            ).to_dict()
        elif args.command == "lane-access":
            out = evaluate_api_key_lane_access(
                load_routing_policy(config.routing_policy_path),
                load_budget_policy(config.budget_config_path),
                config.runtime_env(),
            )
        elif args.command == "hints":
            out = HintStore(config.hints_path).read_all()
        elif args.command == "drain":
            out = ops_queue.drain_inline(config.commands_root)
        else:
            raise ValueError("Unknown command")

        print(json.dumps(out, indent=2, sort_keys=True, ensure_ascii=False))
        return 0
    except Exception as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
