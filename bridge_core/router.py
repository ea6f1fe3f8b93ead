"""Prefix/natural-language classifier and role allowlist gate."""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import Any

from bridge_core import nl_inference
from bridge_core.config import DEFAULT_NL_ROUTING
from bridge_core.normalize import (
    normalize_incoming_text,
    parse_approve_shorthand,
    parse_deny_shorthand,
    parse_natural_approval,
)
from bridge_core.routes import Route


# Matching order is the declaration order below.
DEFAULT_PREFIXES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("word", ("단어:", "학습:")),
    ("memo", ("메모:", "기록:")),
    ("finance", ("가계:", "가계부:")),
    ("todo", ("투두:", "할일:")),
    ("routine", ("루틴:",)),
    ("workout", ("운동:",)),
    ("media", ("콘텐츠:",)),
    ("place", ("식당:", "맛집:")),
    ("news", ("소식:",)),
    ("report", ("리포트:", "요약:")),
    ("work", ("작업:", "실행:")),
    ("inspect", ("점검:", "검토:")),
    ("deploy", ("배포:", "출시:")),
    ("project", ("프로젝트:",)),
    ("prompt", ("프롬프트:", "질문:")),
    ("link", ("링크:",)),
    ("status", ("상태:",)),
    ("ops", ("운영:",)),
)

NL_RETRY_ROUTES = {"work", "inspect", "project"}
_TEMPLATE_LINE_RE = re.compile(r"(?:^|[;\n])\s*[^:：\n]{1,40}\s*[:：]\s*\S+")


@dataclass(frozen=True)
class ClassifiedCommand:
    route: str
    payload: str
    inferred_by: str
    requested_route: str = ""
    hint: str = ""

    @property
    def blocked(self) -> bool:
        return self.route == Route.BLOCKED.value

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "route": self.route,
            "payload": self.payload,
            "inferredBy": self.inferred_by,
        }
        if self.blocked:
            out["requestedRoute"] = self.requested_route
            out["hint"] = self.hint
        return out


@dataclass
class RoleContext:
    """Per-caller classification inputs.

    `allowed_routes` of None disables the allowlist gate entirely.
    `approval_pending` lets a bare "승인"/"approve" reach the ops route.
    """

    is_hub: bool = True
    allowed_routes: tuple[str, ...] | None = None
    block_hint: str = ""
    nl_routing: dict[str, bool] = field(default_factory=lambda: dict(DEFAULT_NL_ROUTING))
    command_prefixes: dict[str, list[str]] = field(default_factory=dict)
    approval_pending: bool = False


def build_prefix_rules(
    overrides: dict[str, list[str]] | None = None,
) -> list[tuple[str, list[str]]]:
    overrides = overrides or {}
    rules: list[tuple[str, list[str]]] = []
    for route, prefixes in DEFAULT_PREFIXES:
        custom = [p for p in overrides.get(route, []) if str(p).strip()]
        rules.append((route, custom or list(prefixes)))
    return rules


def match_prefix(text: str, prefix: str) -> int | None:
    """Return the length of the matched prefix plus separator, or None."""
    raw_prefix = (prefix or "").strip()
    if not raw_prefix:
        return None
    colon = re.match(r"^(.*?)[：:]$", raw_prefix)
    if colon:
        stem = colon.group(1).strip()
        if not stem:
            return None
        # The bare stem needs a word boundary so "메모장" never matches "메모:".
        pattern = rf"^\s*{re.escape(stem)}(?:\s*[:：]\s*|(?=\s|$)\s*)"
    else:
        pattern = rf"^\s*{re.escape(raw_prefix)}\s+"
    m = re.match(pattern, text, re.IGNORECASE)
    return m.end() if m else None


def is_structured_template(payload: str) -> bool:
    return bool(payload.strip()) and _TEMPLATE_LINE_RE.search(payload) is not None


def route_text(text: str, ctx: RoleContext) -> ClassifiedCommand:
    """Classify without applying the allowlist."""
    raw = str(text or "").strip()
    normalized = normalize_incoming_text(raw) or raw

    if nl_inference.is_likely_journal_block(normalized):
        return ClassifiedCommand(Route.MEMO.value, normalized, "journal-block")

    for route, prefixes in build_prefix_rules(ctx.command_prefixes):
        for prefix in prefixes:
            offset = match_prefix(normalized, prefix)
            if offset is None:
                continue
            payload = normalized[offset:].strip()
            if route in NL_RETRY_ROUTES and not is_structured_template(payload):
                inferred = nl_inference.infer_natural_language_route(
                    normalized, ctx.nl_routing, ctx.is_hub
                )
                if inferred and inferred["route"] == route and inferred["payload"].strip():
                    return ClassifiedCommand(
                        route, inferred["payload"], inferred["inferred_by"]
                    )
            return ClassifiedCommand(route, payload, f"prefix:{prefix}")

    approve = parse_approve_shorthand(normalized)
    if approve:
        return ClassifiedCommand(
            Route.OPS.value, approve["normalized_payload"], "shorthand:approve"
        )
    deny = parse_deny_shorthand(normalized)
    if deny:
        return ClassifiedCommand(Route.OPS.value, deny["normalized_payload"], "shorthand:deny")

    natural = parse_natural_approval(normalized)
    if natural and ctx.approval_pending:
        return ClassifiedCommand(
            Route.OPS.value,
            natural["normalized_payload"],
            f"shorthand:natural-{natural['decision']}",
        )

    inferred = nl_inference.infer_natural_language_route(
        normalized, ctx.nl_routing, ctx.is_hub
    )
    if inferred:
        return ClassifiedCommand(
            inferred["route"], inferred["payload"], inferred["inferred_by"]
        )
    return ClassifiedCommand(Route.NONE.value, normalized, "default")


def apply_role_allowlist(
    command: ClassifiedCommand, ctx: RoleContext
) -> ClassifiedCommand:
    if ctx.allowed_routes is None:
        return command
    if command.route in {Route.NONE.value, Route.BLOCKED.value}:
        return command
    if command.route in ctx.allowed_routes:
        return command
    hint = f"'{command.route}' 명령은 이 봇에서 허용되지 않습니다."
    if ctx.block_hint:
        hint = f"{hint} ({ctx.block_hint})"
    return replace(
        command,
        route=Route.BLOCKED.value,
        requested_route=command.route,
        hint=hint,
    )


def classify(text: str, ctx: RoleContext) -> ClassifiedCommand:
    return apply_role_allowlist(route_text(text, ctx), ctx)
