#!/usr/bin/env python3
from __future__ import annotations

import io
import json
import os
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path

from bridge_core.config import BridgeConfig, load_config, write_json_atomic
from bridge_core.dispatch import Dispatcher, main
from bridge_core.ops_plan import OpsCollaborators
from bridge_core.routes import Route


WORK_TEMPLATE = "작업: 요청: x; 대상: y; 완료기준: z"


class DispatcherTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name)
        self.routing = self.root / "routing.json"

    def tearDown(self) -> None:
        self.tmp.cleanup()

    def make(self, **overrides) -> Dispatcher:
        config = BridgeConfig(
            storage_root=self.root,
            routing_policy_path=self.routing,
            budget_config_path=self.root / "config.json",
            env={},
        )
        for key, value in overrides.items():
            setattr(config, key, value)
        return Dispatcher(config)

    def audit_rows(self, dispatcher: Dispatcher) -> list[dict]:
        path = dispatcher.config.audit_log
        return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]

    def test_every_route_has_a_handler(self) -> None:
        self.assertEqual(set(Dispatcher.ROUTE_HANDLERS), set(Route))
        for name in Dispatcher.ROUTE_HANDLERS.values():
            self.assertTrue(callable(getattr(Dispatcher, name)))

    def test_forward_route_is_lane_tagged(self) -> None:
        dispatcher = self.make()
        out = dispatcher.dispatch("단어: apple", requested_by="alice")
        self.assertTrue(out["success"])
        self.assertEqual(out["telegramReply"], "단어 요청 접수")
        self.assertEqual(out["apiLane"], "local-only")
        self.assertEqual(out["apiAuthMode"], "none")
        self.assertEqual(out["apiLaneReason"], "route-default:word|prefix:단어:")
        self.assertEqual(self.audit_rows(dispatcher)[0]["status"], "ok")

    def test_work_template_gets_oauth_lane(self) -> None:
        out = self.make().dispatch(WORK_TEMPLATE)
        self.assertTrue(out["templateValid"])
        self.assertEqual(out["normalizedInstruction"], "요청: x\n대상: y\n완료기준: z")
        self.assertEqual(out["apiLane"], "oauth-codex")
        self.assertEqual(out["apiFallbackLane"], "api-key-openai")
        self.assertFalse(out["apiBlocked"])

    def test_blocked_lane_annotates_reply(self) -> None:
        dispatcher = self.make()
        out = dispatcher.dispatch(WORK_TEMPLATE + "; API: key")
        self.assertTrue(out["success"])
        self.assertTrue(out["apiBlocked"])
        self.assertEqual(out["apiBlockReason"], "api_key_lane_disabled")
        self.assertTrue(
            out["telegramReply"].endswith("- API lane 차단: api_key_lane_disabled (대체: oauth-codex)")
        )
        self.assertEqual(self.audit_rows(dispatcher)[0]["status"], "lane_blocked")

    def test_key_lane_allowed_with_guards_satisfied(self) -> None:
        dispatcher = self.make(
            env={"MOLTBOT_ENABLE_API_KEY_LANE": "true", "OPENAI_API_KEY": "sk-test"}
        )
        out = dispatcher.dispatch(WORK_TEMPLATE + "; API: key")
        self.assertEqual(out["apiLane"], "api-key-openai")
        self.assertIn("manual-override:key", out["apiLaneReason"])
        self.assertFalse(out["apiBlocked"])

    def test_role_gate_blocks_route(self) -> None:
        dispatcher = self.make(role="dev", allowed_routes=("memo",), block_hint="허브 봇에서 요청하세요")
        out = dispatcher.dispatch(WORK_TEMPLATE)
        self.assertEqual(out["route"], "blocked")
        self.assertEqual(out["requestedRoute"], "work")
        self.assertIn("허브 봇에서 요청하세요", out["telegramReply"])
        self.assertNotIn("apiLane", out)
        self.assertEqual(self.audit_rows(dispatcher)[0]["status"], "blocked")

    def test_non_hub_skips_natural_language(self) -> None:
        out = self.make(role="dev").dispatch("데일리 봇 상태 알려줘")
        self.assertEqual(out["route"], "none")
        self.assertFalse(out["success"])
        self.assertTrue(out["telegramReply"].startswith("명령 접두어를 찾지 못했습니다."))

    def test_status_route_reads_snapshot(self) -> None:
        dispatcher = self.make()
        write_json_atomic(
            dispatcher.config.status_snapshot_path,
            {
                "updated_at": "2026-10-17T09:00:00Z",
                "containers": [{"name": "moltbot-dev", "status": "Up 3 hours"}],
            },
        )
        out = dispatcher.dispatch("상태: dev")
        self.assertEqual(out["route"], "status")
        self.assertTrue(out["success"])
        self.assertIn("- moltbot-dev: Up 3 hours", out["telegramReply"])

    def test_policy_edits_apply_to_next_command(self) -> None:
        dispatcher = self.make()
        write_json_atomic(self.routing, {"routeDefaults": {"word": "oauth-codex"}})
        self.assertEqual(dispatcher.dispatch("단어: a")["apiLane"], "oauth-codex")
        write_json_atomic(self.routing, {"routeDefaults": {"word": "local-only"}})
        self.assertEqual(dispatcher.dispatch("단어: a")["apiLane"], "local-only")

    def test_handler_error_is_audited_and_raised(self) -> None:
        config = BridgeConfig(
            storage_root=self.root,
            routing_policy_path=self.routing,
            budget_config_path=self.root / "config.json",
            env={},
        )
        dispatcher = Dispatcher(config, OpsCollaborators())
        with self.assertRaises(ValueError):
            dispatcher.dispatch("운영: 액션: 재시작; 대상: dev")
        row = self.audit_rows(dispatcher)[0]
        self.assertEqual(row["status"], "error")
        self.assertIn("dependencies are incomplete", row["error"])


class CliTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.tmp_path = Path(self.tmp.name)
        self._env_backup = dict(os.environ)
        os.environ["BRIDGE_STORAGE_ROOT"] = str(self.tmp_path / "storage")
        os.environ["BRIDGE_ROUTING_POLICY"] = str(self.tmp_path / "routing.json")
        os.environ["BRIDGE_BUDGET_CONFIG"] = str(self.tmp_path / "config.json")
        os.environ["BRIDGE_ROLE"] = "hub"
        for name in (
            "MOLTBOT_ENABLE_API_KEY_LANE",
            "BRIDGE_ALLOWLIST_ENABLED",
            "BRIDGE_ALLOWLIST_AUTO_ROUTES",
            "BRIDGE_INLINE_WORKER",
            "BRIDGE_UNIFIED_APPROVALS",
            "BRIDGE_NL_ROUTING",
        ):
            os.environ.pop(name, None)

    def tearDown(self) -> None:
        os.environ.clear()
        os.environ.update(self._env_backup)
        self.tmp.cleanup()

    def run_main(self, *argv: str) -> tuple[int, dict]:
        out = io.StringIO()
        with redirect_stdout(out):
            code = main(list(argv))
        return code, json.loads(out.getvalue()) if out.getvalue() else {}

    def test_classify_command(self) -> None:
        code, out = self.run_main("classify", "단어: apple")
        self.assertEqual(code, 0)
        self.assertEqual(out, {"route": "word", "payload": "apple", "inferredBy": "prefix:단어:"})

    def test_auto_command_round_trip(self) -> None:
        code, out = self.run_main("auto", WORK_TEMPLATE, "--requested-by", "alice")
        self.assertEqual(code, 0)
        self.assertEqual(out["route"], "work")
        self.assertEqual(out["apiLane"], "oauth-codex")

    def test_lane_and_lane_access_commands(self) -> None:
        code, lane = self.run_main("lane", "--route", "memo")
        self.assertEqual(code, 0)
        self.assertEqual(lane["apiLane"], "local-only")

        code, access = self.run_main("lane-access")
        self.assertEqual(code, 0)
        self.assertEqual(access["blockReason"], "api_key_lane_disabled")

    def test_drain_and_hints_commands(self) -> None:
        self.run_main("auto", "운영: 액션: 메일; 작업: send", "--requested-by", "alice")
        code, hints = self.run_main("hints")
        self.assertEqual(code, 0)
        self.assertIn("alice", hints)

        code, drained = self.run_main("drain")
        self.assertEqual(code, 0)
        self.assertEqual(len(drained["pending_created"]), 1)

    def test_invalid_role_reports_error(self) -> None:
        os.environ["BRIDGE_ROLE"] = "captain"
        err = io.StringIO()
        with redirect_stderr(err):
            code, _ = self.run_main("classify", "단어: apple")
        self.assertEqual(code, 1)
        self.assertIn("ERROR: Invalid BRIDGE_ROLE 'captain'", err.getvalue())

    def test_load_config_reads_allowlist_env(self) -> None:
        os.environ["BRIDGE_ALLOWLIST_AUTO_ROUTES"] = "memo, word, bogus, memo"
        os.environ["BRIDGE_INLINE_WORKER"] = "off"
        config = load_config()
        self.assertEqual(config.allowed_routes, ("memo", "word"))
        self.assertFalse(config.inline_worker)

        os.environ["BRIDGE_ALLOWLIST_AUTO_ROUTES"] = "__none__"
        self.assertEqual(load_config().allowed_routes, ())

        os.environ["BRIDGE_ALLOWLIST_ENABLED"] = "false"
        self.assertIsNone(load_config().allowed_routes)


if __name__ == "__main__":
    unittest.main()
