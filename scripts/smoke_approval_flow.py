#!/usr/bin/env python3
"""Approval round-trip smoke test for the bridge dispatcher.

Runs a short, deterministic sequence against throwaway storage that validates:
- a high-risk PLAN is queued and remembered as the requester's hint
- a bare approve resolves the hint, consumes the token and hands off to ready
- a duplicate approve finds nothing pending
- a bare deny consumes its token with a deny decision
"""

from __future__ import annotations

import argparse
import json
import os
import shutil
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from bridge_core import ops_queue
from bridge_core.config import BridgeConfig, repo_root
from bridge_core.dispatch import Dispatcher


@dataclass
class StepResult:
    command: str
    route: str
    success: bool
    error_code: str | None
    request_id: str | None


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Approval round-trip smoke test")
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print only JSON summary",
    )
    parser.add_argument(
        "--output",
        default="",
        help="Optional path to write JSON summary",
    )
    parser.add_argument(
        "--env-file",
        default=str(repo_root() / ".env"),
        help="Env file to load before running",
    )
    parser.add_argument(
        "--keep-storage",
        action="store_true",
        help="Leave the temporary storage directory in place",
    )
    return parser.parse_args()


def load_env_file(path: Path) -> None:
    if not path.exists():
        return
    for raw in path.read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if not key:
            continue
        value = value.strip()
        if (value.startswith('"') and value.endswith('"')) or (
            value.startswith("'") and value.endswith("'")
        ):
            value = value[1:-1]
        os.environ.setdefault(key, value)


def count_dir(root: Path, name: str) -> int:
    return len(list(ops_queue.state_dir(root, name).glob("*")))


def run_sequence(storage: Path) -> dict[str, Any]:
    config = BridgeConfig(
        storage_root=storage,
        routing_policy_path=repo_root() / "policies/api_routing_policy.json",
        budget_config_path=repo_root() / "policies/config.json",
    )
    dispatcher = Dispatcher(config)
    commands = config.commands_root
    steps: list[StepResult] = []

    def run_cmd(text: str, requested_by: str = "smoke") -> dict[str, Any]:
        out = dispatcher.dispatch(text, requested_by=requested_by)
        steps.append(
            StepResult(
                command=text,
                route=str(out.get("route")),
                success=bool(out.get("success")),
                error_code=out.get("errorCode"),
                request_id=out.get("requestId"),
            )
        )
        return out

    plan = run_cmd("운영: 액션: 파일; 작업: git_push; 경로: ~/Projects/smoke")
    hint_written = dispatcher.collab.hints is not None and dispatcher.collab.hints.has_any()

    approve1 = run_cmd("승인")
    pending_after_approve = len(ops_queue.list_pending_approvals(commands))
    approve2 = run_cmd("운영: 액션: 승인")

    mail = run_cmd("운영: 액션: 메일; 작업: send; 수신자: smoke@example.com", requested_by="smoke-2")
    deny = run_cmd("거부", requested_by="smoke-2")
    denied = ops_queue.read_json(ops_queue.consumed_token_path(commands, deny.get("token", "")))

    checks = {
        "plan_gated": bool(plan.get("requiresApproval")) and plan.get("riskTier") == "GIT_AWARE",
        "hint_written": hint_written,
        "approve_consumes_token": (
            approve1.get("success") is True
            and pending_after_approve == 0
            and approve1.get("approvalFlags") == ["force", "push"]
        ),
        "duplicate_approve_rejected": approve2.get("errorCode") == "TOKEN_REQUIRED",
        "deny_recorded": (
            mail.get("requiresApproval") is True
            and deny.get("success") is True
            and (denied or {}).get("decision") == "deny"
        ),
    }

    return {
        "storage_root": str(storage),
        "steps": [
            {
                "command": s.command,
                "route": s.route,
                "success": s.success,
                "error_code": s.error_code,
                "request_id": s.request_id,
            }
            for s in steps
        ],
        "checks": checks,
        "queue_counts": {
            name: count_dir(commands, name)
            for name in ("pending", "consumed", "ready", "completed")
        },
        "approve_messages": {
            "first": approve1.get("telegramReply"),
            "second": approve2.get("telegramReply"),
        },
    }


def main() -> int:
    args = parse_args()
    load_env_file(Path(args.env_file).resolve())
    started = time.time()

    storage = Path(tempfile.mkdtemp(prefix="bridge-smoke-"))
    try:
        sequence = run_sequence(storage)
    finally:
        if not args.keep_storage:
            shutil.rmtree(storage, ignore_errors=True)
    duration = round(time.time() - started, 2)

    passed = all(sequence["checks"].values())
    summary = {
        "ok": passed,
        "duration_seconds": duration,
        "result": sequence,
    }

    if args.output:
        out_path = Path(args.output).resolve()
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(
            json.dumps(summary, indent=2, sort_keys=True, ensure_ascii=False), encoding="utf-8"
        )

    if args.json:
        print(json.dumps(summary, ensure_ascii=True))
    else:
        print(json.dumps(summary, indent=2, sort_keys=True, ensure_ascii=False))

    return 0 if passed else 1


if __name__ == "__main__":
    raise SystemExit(main())
