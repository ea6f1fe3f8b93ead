"""Upstream lane selection: route defaults, feature overrides, manual
override and direct-credential guards.

`decide_lane` is pure. Callers load the routing and budget documents
fresh (see `load_routing_policy` / `load_budget_policy`) before every
decision, so edits to the policy files apply to the next command.
"""

from __future__ import annotations

import copy
import math
import re
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Mapping

from bridge_core.config import load_policy
from bridge_core.routes import COMPLEX_WORK_ROUTES


OAUTH_LANE = "oauth-codex"
API_KEY_LANE = "api-key-openai"
LOCAL_LANE = "local-only"

DEFAULT_ROUTING_POLICY: dict[str, Any] = {
    "version": 1,
    "lanes": {
        OAUTH_LANE: {
            "authMode": "oauth",
            "capabilities": ["complex_reasoning", "code_review", "translation"],
        },
        API_KEY_LANE: {
            "authMode": "api-key",
            "capabilities": ["responses_api", "realtime_api", "batch_jobs", "webhooks"],
        },
        LOCAL_LANE: {
            "authMode": "none",
            "capabilities": ["local_scripts", "system_checks"],
        },
    },
    "routeDefaults": {
        "work": OAUTH_LANE,
        "inspect": OAUTH_LANE,
        "deploy": OAUTH_LANE,
        "project": OAUTH_LANE,
        "prompt": OAUTH_LANE,
        "report": OAUTH_LANE,
        "word": LOCAL_LANE,
        "memo": LOCAL_LANE,
        "news": LOCAL_LANE,
        "finance": LOCAL_LANE,
        "todo": LOCAL_LANE,
        "routine": LOCAL_LANE,
        "workout": LOCAL_LANE,
        "media": LOCAL_LANE,
        "place": LOCAL_LANE,
        "status": LOCAL_LANE,
        "link": LOCAL_LANE,
        "ops": LOCAL_LANE,
        "none": LOCAL_LANE,
    },
    "featureOverrides": [],
    "guards": {
        "enableApiKeyLane": False,
        "requirePaidApproval": True,
        "blockWhenRateLimitSafeMode": True,
    },
}

_INLINE_OVERRIDE_RE = re.compile(r"(?:^|[;\n])\s*api\s*[:：]\s*([^;\n]+)", re.IGNORECASE)


def merge_policy(base: dict[str, Any], custom: Mapping[str, Any] | None) -> dict[str, Any]:
    """Shallow-merge the lane, route-default and guard maps of `custom`.

    `featureOverrides` is replaced only when `custom` provides a list.
    """
    custom = custom or {}
    merged = {**copy.deepcopy(base), **copy.deepcopy(dict(custom))}
    for key in ("lanes", "routeDefaults", "guards"):
        section = custom.get(key)
        merged[key] = {
            **copy.deepcopy(base.get(key, {})),
            **(copy.deepcopy(section) if isinstance(section, dict) else {}),
        }
    overrides = custom.get("featureOverrides")
    merged["featureOverrides"] = (
        copy.deepcopy(overrides)
        if isinstance(overrides, list)
        else copy.deepcopy(base.get("featureOverrides", []))
    )
    return merged


def load_routing_policy(
    path: Path | None = None, custom: Mapping[str, Any] | None = None
) -> dict[str, Any]:
    if isinstance(custom, Mapping):
        return merge_policy(DEFAULT_ROUTING_POLICY, custom)
    from_file = load_policy(path) if path is not None else {}
    return merge_policy(DEFAULT_ROUTING_POLICY, from_file)


def load_budget_policy(
    path: Path | None = None, custom: Mapping[str, Any] | None = None
) -> dict[str, Any]:
    if isinstance(custom, Mapping):
        return dict(custom)
    doc = load_policy(path) if path is not None else {}
    budget = doc.get("budgetPolicy")
    return budget if isinstance(budget, dict) else {}


def normalize_lane(value: Any, policy: Mapping[str, Any]) -> str:
    lane = str(value or "").strip()
    if lane and lane in (policy.get("lanes") or {}):
        return lane
    return LOCAL_LANE


def normalize_route(value: Any) -> str:
    return str(value or "").strip().lower() or "none"


def normalize_api_override(raw: Any) -> dict[str, Any]:
    value = str(raw or "").strip().lower()
    if not value or value == "auto":
        return {"lane": None, "valid": True, "value": "auto"}
    if value == "oauth":
        return {"lane": OAUTH_LANE, "valid": True, "value": value}
    if value == "key":
        return {"lane": API_KEY_LANE, "valid": True, "value": value}
    return {"lane": None, "valid": False, "value": value}


def extract_api_override_from_text(text: str) -> str:
    m = _INLINE_OVERRIDE_RE.search(str(text or ""))
    return m.group(1).strip() if m else ""


def env_true(env: Mapping[str, str], name: str) -> bool:
    return str(env.get(name) or "").strip().lower() == "true"


def _number(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return math.nan


def evaluate_api_key_lane_access(
    policy: Mapping[str, Any],
    budget_policy: Mapping[str, Any],
    env: Mapping[str, str],
) -> dict[str, Any]:
    """Check the direct-credential guards in precedence order."""
    guards = policy.get("guards") or {}
    lane_enabled = env_true(env, "MOLTBOT_ENABLE_API_KEY_LANE") or bool(
        guards.get("enableApiKeyLane")
    )

    def blocked(reason: str) -> dict[str, Any]:
        return {
            "allowed": False,
            "blocked": True,
            "blockReason": reason,
            "fallbackLane": OAUTH_LANE,
        }

    if not lane_enabled:
        return blocked("api_key_lane_disabled")

    if bool(guards.get("blockWhenRateLimitSafeMode")) and env_true(env, "RATE_LIMIT_SAFE_MODE"):
        return blocked("rate_limit_safe_mode")

    budget_gate = _number(budget_policy.get("monthlyApiBudgetYen")) == 0 and bool(
        budget_policy.get("paidApiRequiresApproval")
    )
    if (
        bool(guards.get("requirePaidApproval"))
        and budget_gate
        and not env_true(env, "MOLTBOT_ALLOW_PAID_API")
    ):
        return blocked("paid_api_approval_required")

    api_key = str(env.get("OPENAI_API_KEY") or env.get("OPENCLAW_OPENAI_API_KEY") or "")
    if not api_key.strip():
        return blocked("openai_api_key_missing")

    return {"allowed": True, "blocked": False, "blockReason": "", "fallbackLane": None}


def match_feature_override(row: Any, route: str, command_text: str) -> bool:
    if not isinstance(row, Mapping) or row.get("enabled") is False:
        return False

    routes = [
        str(v or "").strip().lower()
        for v in (row.get("routes") if isinstance(row.get("routes"), list) else [])
    ]
    routes = [r for r in routes if r]
    if routes and route not in routes:
        return False

    text = str(command_text or "").lower().strip()
    if not text and row.get("allowEmptyCommand"):
        return True

    raw_keywords = row.get("keywords") if isinstance(row.get("keywords"), list) else []
    keywords = [str(k or "").strip().lower() for k in raw_keywords]
    keywords = [k for k in keywords if k]
    if not keywords:
        return False

    if str(row.get("match") or "any").lower() == "all":
        return all(k in text for k in keywords)
    return any(k in text for k in keywords)


@dataclass(frozen=True)
class LaneDecision:
    api_lane: str
    auth_mode: str
    reason: str
    capabilities: list[str] = field(default_factory=list)
    blocked: bool = False
    block_reason: str = ""
    fallback_lane: str | None = None
    override: str = "auto"

    def to_dict(self) -> dict[str, Any]:
        raw = asdict(self)
        return {
            "apiLane": raw["api_lane"],
            "authMode": raw["auth_mode"],
            "reason": raw["reason"],
            "capabilities": raw["capabilities"],
            "blocked": raw["blocked"],
            "blockReason": raw["block_reason"],
            "fallbackLane": raw["fallback_lane"],
            "override": raw["override"],
        }


def decide_lane(
    route: str,
    command_text: str = "",
    *,
    policy: Mapping[str, Any],
    budget_policy: Mapping[str, Any],
    env: Mapping[str, str],
    route_hint: str = "",
    template_fields: Mapping[str, str] | None = None,
) -> LaneDecision:
    route = normalize_route(route)
    route_hint = str(route_hint or "").strip()
    command_text = str(command_text or "").strip()
    template_fields = template_fields or {}

    defaults = policy.get("routeDefaults") or {}
    lane = normalize_lane(defaults.get(route) or defaults.get("none"), policy)
    reason = f"route-default:{route}"

    overrides = policy.get("featureOverrides")
    for row in overrides if isinstance(overrides, list) else []:
        if match_feature_override(row, route, command_text):
            lane = normalize_lane(row.get("targetLane"), policy)
            reason = f"feature-override:{row.get('id') or 'unnamed'}"
            break

    override = normalize_api_override(
        template_fields.get("API") or extract_api_override_from_text(command_text)
    )

    blocked = False
    block_reason = ""
    fallback_lane: str | None = None

    if not override["valid"]:
        blocked = True
        block_reason = "invalid_api_override"
        fallback_lane = lane
    elif override["lane"]:
        lane = normalize_lane(override["lane"], policy)
        reason = f"manual-override:{override['value']}"

    if not blocked and lane == API_KEY_LANE:
        access = evaluate_api_key_lane_access(policy, budget_policy, env)
        blocked = access["blocked"]
        block_reason = access["blockReason"]
        fallback_lane = access["fallbackLane"]

    if not blocked and lane == OAUTH_LANE and route in COMPLEX_WORK_ROUTES:
        fallback_lane = API_KEY_LANE

    lanes = policy.get("lanes") or {}
    meta = lanes.get(lane) or lanes.get(LOCAL_LANE) or {"authMode": "none", "capabilities": []}
    capabilities = meta.get("capabilities")

    return LaneDecision(
        api_lane=lane,
        auth_mode=str(meta.get("authMode") or "none"),
        reason=f"{reason}|{route_hint}" if route_hint else reason,
        capabilities=list(capabilities) if isinstance(capabilities, list) else [],
        blocked=blocked,
        block_reason=block_reason,
        fallback_lane=fallback_lane,
        override=override["value"],
    )
