"""Environment, policy-file and audit helpers for the bridge dispatcher."""

from __future__ import annotations

import json
import os
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from bridge_core.routes import DEFAULT_ALLOWED_ROUTES, parse_route_list


VALID_ROLES = {"hub", "dev", "anki", "research", "daily"}

DEFAULT_NL_ROUTING: dict[str, bool] = {
    "enabled": True,
    "hubOnly": True,
    "inferMemo": True,
    "inferFinance": True,
    "inferTodo": True,
    "inferRoutine": True,
    "inferWorkout": True,
    "inferBrowser": True,
    "inferSchedule": True,
    "inferStatus": True,
    "inferLink": True,
    "inferProject": True,
    "inferReport": True,
}

DEFAULT_RESTART_TARGETS: dict[str, list[str]] = {
    "dev": ["moltbot-dev"],
    "anki": ["moltbot-anki"],
    "research": ["moltbot-research"],
    "daily": ["moltbot-daily"],
    "proxy": ["moltbot-proxy"],
    "webproxy": ["moltbot-web-proxy"],
    "tunnel": ["moltbot-dev-tunnel"],
    "prompt": ["moltbot-prompt-web"],
}


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def repo_root() -> Path:
    return Path(__file__).resolve().parents[1]


def storage_root() -> Path:
    return Path(
        os.getenv("BRIDGE_STORAGE_ROOT", str(repo_root() / "storage"))
    ).resolve()


def routing_policy_path() -> Path:
    return Path(
        os.getenv(
            "BRIDGE_ROUTING_POLICY",
            str(repo_root() / "policies/api_routing_policy.json"),
        )
    )


def budget_config_path() -> Path:
    return Path(
        os.getenv("BRIDGE_BUDGET_CONFIG", str(repo_root() / "policies/config.json"))
    )


def env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


def bridge_role() -> str:
    role = os.getenv("BRIDGE_ROLE", "hub").strip().lower()
    if role not in VALID_ROLES:
        allowed = ", ".join(sorted(VALID_ROLES))
        raise ValueError(f"Invalid BRIDGE_ROLE '{role}'. Allowed: {allowed}")
    return role


def allowlist_routes() -> tuple[str, ...] | None:
    if not env_flag("BRIDGE_ALLOWLIST_ENABLED", True):
        return None
    raw = os.getenv("BRIDGE_ALLOWLIST_AUTO_ROUTES")
    if raw is None or not raw.strip():
        return DEFAULT_ALLOWED_ROUTES
    return parse_route_list(raw)


def load_policy(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    raw = path.read_text(encoding="utf-8").strip()
    if not raw:
        return {}
    try:
        loaded = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return loaded if isinstance(loaded, dict) else {}


def write_json_atomic(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f"{path.name}.tmp-{os.getpid()}-{time.time_ns()}")
    tmp_path.write_text(
        json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8"
    )
    os.replace(tmp_path, path)


def append_audit(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as f:
        f.write(json.dumps(payload, sort_keys=True, ensure_ascii=False) + "\n")


@dataclass
class BridgeConfig:
    """Everything a single dispatch reads besides the live lane policy.

    Routing and budget policy files are only referenced by path so that
    each lane decision re-reads them.
    """

    storage_root: Path
    routing_policy_path: Path
    budget_config_path: Path
    role: str = "hub"
    allowed_routes: tuple[str, ...] | None = DEFAULT_ALLOWED_ROUTES
    block_hint: str = ""
    nl_routing: dict[str, bool] = field(
        default_factory=lambda: dict(DEFAULT_NL_ROUTING)
    )
    command_prefixes: dict[str, list[str]] = field(default_factory=dict)
    unified_approvals: bool = True
    inline_worker: bool = True
    restart_targets: dict[str, list[str]] = field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_RESTART_TARGETS.items()}
    )
    capability_policy: dict[str, dict[str, dict[str, Any]]] | None = None
    env: dict[str, str] | None = None

    @property
    def is_hub(self) -> bool:
        return self.role == "hub"

    @property
    def audit_log(self) -> Path:
        return self.storage_root / "memory" / "bridge_dispatch_audit.jsonl"

    @property
    def hints_path(self) -> Path:
        return self.storage_root / "memory" / "approval_hints.json"

    @property
    def commands_root(self) -> Path:
        return self.storage_root / "ops" / "commands"

    @property
    def status_snapshot_path(self) -> Path:
        return self.storage_root / "ops" / "status_snapshot.json"

    def runtime_env(self) -> dict[str, str]:
        if self.env is not None:
            return self.env
        return dict(os.environ)


def load_config() -> BridgeConfig:
    nl_routing = dict(DEFAULT_NL_ROUTING)
    nl_routing["enabled"] = env_flag("BRIDGE_NL_ROUTING", True)
    nl_routing["hubOnly"] = env_flag("BRIDGE_NL_HUB_ONLY", True)

    root = storage_root()
    (root / "memory").mkdir(parents=True, exist_ok=True)

    return BridgeConfig(
        storage_root=root,
        routing_policy_path=routing_policy_path(),
        budget_config_path=budget_config_path(),
        role=bridge_role(),
        allowed_routes=allowlist_routes(),
        block_hint=os.getenv("BRIDGE_BLOCK_HINT", "").strip(),
        nl_routing=nl_routing,
        unified_approvals=env_flag("BRIDGE_UNIFIED_APPROVALS", True),
        inline_worker=env_flag("BRIDGE_INLINE_WORKER", True),
    )
