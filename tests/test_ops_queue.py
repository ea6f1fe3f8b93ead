#!/usr/bin/env python3
from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path

from bridge_core import ops_queue


class OpsQueueTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name) / "commands"

    def tearDown(self) -> None:
        self.tmp.cleanup()

    def plan(self, requires_approval: bool, **extra) -> dict:
        record = {
            "phase": "plan",
            "capability": "mail",
            "action": "send",
            "requested_by": "alice",
            "payload": {"recipient": "a@example.com"},
            "risk_tier": "HIGH",
            "requires_approval": requires_approval,
            "required_flags": ["force"],
        }
        record.update(extra)
        return record

    def read_results(self) -> list[dict]:
        path = ops_queue.results_path(self.root)
        return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]

    def test_enqueue_writes_outbox_record(self) -> None:
        queued = ops_queue.enqueue_command(self.root, self.plan(True))
        self.assertTrue(queued["requestId"].startswith("opsfc-"))
        files = ops_queue.list_outbox(self.root)
        self.assertEqual(len(files), 1)
        stored = json.loads(files[0].read_text(encoding="utf-8"))
        self.assertEqual(stored["request_id"], queued["requestId"])
        self.assertEqual(stored["schema_version"], "1.0")

    def test_drain_creates_pending_token_for_gated_plan(self) -> None:
        queued = ops_queue.enqueue_command(self.root, self.plan(True))
        summary = ops_queue.drain_inline(self.root)
        self.assertEqual(summary["claimed"], 1)
        self.assertEqual(len(summary["pending_created"]), 1)

        pending = ops_queue.list_pending_approvals(self.root)
        self.assertEqual(len(pending), 1)
        self.assertEqual(pending[0]["request_id"], queued["requestId"])
        self.assertEqual(pending[0]["required_flags"], ["force"])
        self.assertRegex(pending[0]["id"], r"^apv_[a-f0-9]{16}$")
        self.assertEqual(ops_queue.list_outbox(self.root), [])
        self.assertEqual(self.read_results()[0]["status"], "approval_pending")

    def test_ungated_plan_goes_to_ready(self) -> None:
        queued = ops_queue.enqueue_command(self.root, self.plan(False))
        summary = ops_queue.drain_inline(self.root)
        self.assertEqual(summary["ready"], [queued["requestId"]])
        self.assertEqual(ops_queue.list_pending_approvals(self.root), [])
        self.assertEqual(len(list(ops_queue.state_dir(self.root, "ready").glob("*.json"))), 1)

    def test_token_consumed_once(self) -> None:
        ops_queue.enqueue_command(self.root, self.plan(True))
        ops_queue.drain_inline(self.root)
        token = ops_queue.list_pending_approvals(self.root)[0]["id"]

        consumed = ops_queue.consume_approval(self.root, token, "approve", "alice", "opsfc-1")
        self.assertEqual(consumed["decision"], "approve")
        self.assertIsNotNone(consumed["consumed_at"])
        self.assertIsNone(ops_queue.read_pending_token(self.root, token))

        with self.assertRaises(ValueError):
            ops_queue.consume_approval(self.root, token, "approve")

    def test_consume_rejects_bad_input(self) -> None:
        with self.assertRaises(KeyError):
            ops_queue.consume_approval(self.root, "apv_0000000000000000", "approve")
        with self.assertRaises(ValueError):
            ops_queue.consume_approval(self.root, "not-a-token", "approve")
        with self.assertRaises(ValueError):
            ops_queue.consume_approval(self.root, "apv_0000000000000000", "maybe")
        self.assertIsNone(ops_queue.read_pending_token(self.root, "../etc/passwd"))

    def test_execute_with_unknown_token_fails_without_raising(self) -> None:
        ops_queue.enqueue_command(
            self.root,
            {"phase": "execute", "payload": {"token": "apv_1111111111111111", "decision": "approve"}},
        )
        summary = ops_queue.drain_inline(self.root)
        self.assertEqual(len(summary["failed"]), 1)
        self.assertEqual(self.read_results()[0]["status"], "failed")

    def test_deny_moves_record_to_completed(self) -> None:
        ops_queue.enqueue_command(self.root, self.plan(True))
        ops_queue.drain_inline(self.root)
        token = ops_queue.list_pending_approvals(self.root)[0]["id"]

        ops_queue.enqueue_command(
            self.root, {"phase": "execute", "payload": {"token": token, "decision": "deny"}}
        )
        summary = ops_queue.drain_inline(self.root)
        self.assertEqual(len(summary["denied"]), 1)
        consumed = ops_queue.read_json(ops_queue.consumed_token_path(self.root, token))
        self.assertEqual(consumed["decision"], "deny")

    def test_drain_respects_limit(self) -> None:
        for _ in range(3):
            ops_queue.enqueue_command(self.root, self.plan(False))
        summary = ops_queue.drain_inline(self.root, limit=2)
        self.assertEqual(summary["claimed"], 2)
        self.assertEqual(len(ops_queue.list_outbox(self.root)), 1)


if __name__ == "__main__":
    unittest.main()
