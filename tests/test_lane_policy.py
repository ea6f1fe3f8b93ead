#!/usr/bin/env python3
from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path

from bridge_core.lane_policy import (
    API_KEY_LANE,
    LOCAL_LANE,
    OAUTH_LANE,
    decide_lane,
    evaluate_api_key_lane_access,
    load_budget_policy,
    load_routing_policy,
    match_feature_override,
    merge_policy,
    DEFAULT_ROUTING_POLICY,
)


NO_GATE_BUDGET = {"monthlyApiBudgetYen": 0, "paidApiRequiresApproval": False}
GATED_BUDGET = {"monthlyApiBudgetYen": 0, "paidApiRequiresApproval": True}
KEY_ENV = {"MOLTBOT_ENABLE_API_KEY_LANE": "true", "OPENAI_API_KEY": "sk-test"}


class LaneDecisionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.policy = load_routing_policy()

    def decide(self, route: str, text: str = "", **kwargs) -> dict:
        kwargs.setdefault("policy", self.policy)
        kwargs.setdefault("budget_policy", {})
        kwargs.setdefault("env", {})
        return decide_lane(route, text, **kwargs).to_dict()

    def test_simple_route_stays_local(self) -> None:
        out = self.decide("word", "apple")
        self.assertEqual(out["apiLane"], LOCAL_LANE)
        self.assertEqual(out["authMode"], "none")
        self.assertFalse(out["blocked"])
        self.assertIsNone(out["fallbackLane"])
        self.assertEqual(out["reason"], "route-default:word")

    def test_unknown_route_uses_none_default(self) -> None:
        out = self.decide("mystery")
        self.assertEqual(out["apiLane"], LOCAL_LANE)
        self.assertEqual(out["reason"], "route-default:mystery")

    def test_route_hint_is_appended_to_reason(self) -> None:
        out = self.decide("word", route_hint="prefix:단어:")
        self.assertEqual(out["reason"], "route-default:word|prefix:단어:")

    def test_complex_route_suggests_key_fallback(self) -> None:
        out = self.decide("work", "요청: x")
        self.assertEqual(out["apiLane"], OAUTH_LANE)
        self.assertEqual(out["authMode"], "oauth")
        self.assertFalse(out["blocked"])
        self.assertEqual(out["fallbackLane"], API_KEY_LANE)

    def test_manual_key_override_with_guards_satisfied(self) -> None:
        out = self.decide(
            "work",
            "요청: x; 대상: y; 완료기준: z",
            budget_policy=NO_GATE_BUDGET,
            env=KEY_ENV,
            template_fields={"API": "key"},
        )
        self.assertEqual(out["apiLane"], API_KEY_LANE)
        self.assertEqual(out["authMode"], "api-key")
        self.assertIn("manual-override:key", out["reason"])
        self.assertFalse(out["blocked"])
        self.assertIsNone(out["fallbackLane"])
        self.assertEqual(out["override"], "key")

    def test_inline_override_read_from_text(self) -> None:
        out = self.decide("report", "주간 리포트; api: oauth")
        self.assertEqual(out["apiLane"], OAUTH_LANE)
        self.assertEqual(out["reason"], "manual-override:oauth")

    def test_invalid_override_blocks_with_prior_lane_as_fallback(self) -> None:
        out = self.decide("work", "요청: x; API: turbo")
        self.assertTrue(out["blocked"])
        self.assertEqual(out["blockReason"], "invalid_api_override")
        self.assertEqual(out["fallbackLane"], OAUTH_LANE)
        self.assertEqual(out["override"], "turbo")

    def test_key_lane_blocked_when_disabled(self) -> None:
        out = self.decide("work", template_fields={"API": "key"})
        self.assertEqual(out["apiLane"], API_KEY_LANE)
        self.assertTrue(out["blocked"])
        self.assertEqual(out["blockReason"], "api_key_lane_disabled")
        self.assertEqual(out["fallbackLane"], OAUTH_LANE)

    def test_same_inputs_give_same_decision(self) -> None:
        first = self.decide("prompt", "api: key", env=KEY_ENV, budget_policy=GATED_BUDGET)
        second = self.decide("prompt", "api: key", env=KEY_ENV, budget_policy=GATED_BUDGET)
        self.assertEqual(first, second)


class ApiKeyGuardTests(unittest.TestCase):
    def setUp(self) -> None:
        self.policy = load_routing_policy()

    def test_safe_mode_reported_before_paid_approval(self) -> None:
        env = dict(KEY_ENV, RATE_LIMIT_SAFE_MODE="true")
        out = evaluate_api_key_lane_access(self.policy, GATED_BUDGET, env)
        self.assertEqual(out["blockReason"], "rate_limit_safe_mode")

    def test_paid_approval_required_for_zero_budget(self) -> None:
        out = evaluate_api_key_lane_access(self.policy, GATED_BUDGET, KEY_ENV)
        self.assertEqual(out["blockReason"], "paid_api_approval_required")

    def test_budget_gate_needs_a_numeric_zero_budget(self) -> None:
        for budget in ("", None, "0"):
            gated = {"monthlyApiBudgetYen": budget, "paidApiRequiresApproval": True}
            out = evaluate_api_key_lane_access(self.policy, gated, KEY_ENV)
            self.assertEqual(out["blockReason"], "paid_api_approval_required")

        unparsable = {"monthlyApiBudgetYen": "abc", "paidApiRequiresApproval": True}
        out = evaluate_api_key_lane_access(self.policy, unparsable, KEY_ENV)
        self.assertTrue(out["allowed"])

        funded = {"monthlyApiBudgetYen": 1000, "paidApiRequiresApproval": True}
        self.assertTrue(evaluate_api_key_lane_access(self.policy, funded, KEY_ENV)["allowed"])

    def test_paid_override_then_missing_key(self) -> None:
        env = {"MOLTBOT_ENABLE_API_KEY_LANE": "true", "MOLTBOT_ALLOW_PAID_API": "true"}
        out = evaluate_api_key_lane_access(self.policy, GATED_BUDGET, env)
        self.assertEqual(out["blockReason"], "openai_api_key_missing")

    def test_only_literal_true_enables_guards(self) -> None:
        env = {"MOLTBOT_ENABLE_API_KEY_LANE": "1", "OPENAI_API_KEY": "sk-test"}
        out = evaluate_api_key_lane_access(self.policy, {}, env)
        self.assertEqual(out["blockReason"], "api_key_lane_disabled")

    def test_policy_guard_can_enable_lane(self) -> None:
        policy = load_routing_policy(custom={"guards": {"enableApiKeyLane": True}})
        out = evaluate_api_key_lane_access(policy, {}, {"OPENCLAW_OPENAI_API_KEY": "sk"})
        self.assertTrue(out["allowed"])
        self.assertEqual(out["blockReason"], "")


class FeatureOverrideTests(unittest.TestCase):
    def test_matching_override_changes_lane(self) -> None:
        policy = load_routing_policy(
            custom={
                "featureOverrides": [
                    {"id": "off", "enabled": False, "keywords": ["batch"], "targetLane": OAUTH_LANE},
                    {"id": "local-batch", "routes": ["report"], "keywords": ["batch"], "targetLane": LOCAL_LANE},
                ]
            }
        )
        out = decide_lane("report", "weekly BATCH run", policy=policy, budget_policy={}, env={})
        self.assertEqual(out.api_lane, LOCAL_LANE)
        self.assertEqual(out.reason, "feature-override:local-batch")

    def test_match_modes(self) -> None:
        row = {"keywords": ["voice", "live"], "match": "all"}
        self.assertTrue(match_feature_override(row, "prompt", "live voice chat"))
        self.assertFalse(match_feature_override(row, "prompt", "voice memo"))
        self.assertTrue(match_feature_override({"keywords": ["voice"]}, "prompt", "voice memo"))
        self.assertFalse(match_feature_override({"keywords": []}, "prompt", "anything"))
        self.assertTrue(match_feature_override({"allowEmptyCommand": True}, "prompt", ""))
        self.assertFalse(match_feature_override({"routes": ["work"], "keywords": ["x"]}, "prompt", "x"))
        self.assertFalse(match_feature_override("not-a-row", "prompt", "x"))


class PolicyLoadingTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name)

    def tearDown(self) -> None:
        self.tmp.cleanup()

    def test_merge_keeps_defaults_and_ignores_non_list_overrides(self) -> None:
        merged = merge_policy(
            DEFAULT_ROUTING_POLICY,
            {"routeDefaults": {"word": OAUTH_LANE}, "featureOverrides": "nope"},
        )
        self.assertEqual(merged["routeDefaults"]["word"], OAUTH_LANE)
        self.assertEqual(merged["routeDefaults"]["memo"], LOCAL_LANE)
        self.assertEqual(merged["featureOverrides"], [])
        self.assertEqual(DEFAULT_ROUTING_POLICY["routeDefaults"]["word"], LOCAL_LANE)

    def test_policy_file_is_reread_on_every_load(self) -> None:
        path = self.root / "routing.json"
        path.write_text(json.dumps({"routeDefaults": {"todo": OAUTH_LANE}}), encoding="utf-8")
        self.assertEqual(load_routing_policy(path)["routeDefaults"]["todo"], OAUTH_LANE)

        path.write_text(json.dumps({"routeDefaults": {"todo": LOCAL_LANE}}), encoding="utf-8")
        self.assertEqual(load_routing_policy(path)["routeDefaults"]["todo"], LOCAL_LANE)

    def test_malformed_policy_falls_back_to_defaults(self) -> None:
        path = self.root / "routing.json"
        path.write_text("{not json", encoding="utf-8")
        self.assertEqual(load_routing_policy(path)["routeDefaults"]["work"], OAUTH_LANE)
        self.assertEqual(load_routing_policy(self.root / "missing.json")["version"], 1)

    def test_budget_policy_read_from_config_document(self) -> None:
        path = self.root / "config.json"
        path.write_text(json.dumps({"budgetPolicy": GATED_BUDGET}), encoding="utf-8")
        self.assertEqual(load_budget_policy(path), GATED_BUDGET)
        self.assertEqual(load_budget_policy(self.root / "missing.json"), {})
        self.assertEqual(load_budget_policy(custom={"x": 1}), {"x": 1})


if __name__ == "__main__":
    unittest.main()
