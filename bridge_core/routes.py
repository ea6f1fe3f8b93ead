"""Closed set of dispatch routes."""

from __future__ import annotations

from enum import Enum


class Route(str, Enum):
    WORD = "word"
    MEMO = "memo"
    NEWS = "news"
    FINANCE = "finance"
    TODO = "todo"
    ROUTINE = "routine"
    WORKOUT = "workout"
    MEDIA = "media"
    PLACE = "place"
    REPORT = "report"
    WORK = "work"
    INSPECT = "inspect"
    DEPLOY = "deploy"
    PROJECT = "project"
    PROMPT = "prompt"
    LINK = "link"
    STATUS = "status"
    OPS = "ops"
    NONE = "none"
    BLOCKED = "blocked"

    @classmethod
    def parse(cls, value: str | None) -> "Route":
        key = str(value or "").strip().lower()
        if not key:
            return cls.NONE
        try:
            return cls(key)
        except ValueError:
            return cls.NONE


# Routes whose work prefers the OAuth lane and may be offered the key lane.
COMPLEX_WORK_ROUTES = frozenset(
    r.value
    for r in (Route.WORK, Route.INSPECT, Route.DEPLOY, Route.PROJECT, Route.PROMPT, Route.REPORT)
)

DEFAULT_ALLOWED_ROUTES: tuple[str, ...] = (
    "word",
    "memo",
    "news",
    "report",
    "work",
    "inspect",
    "deploy",
    "project",
    "prompt",
    "link",
    "status",
    "ops",
    "finance",
    "todo",
    "routine",
    "workout",
    "media",
    "place",
)


def parse_route_list(raw: str) -> tuple[str, ...]:
    """Parse a comma separated route list, keeping first-seen order.

    `__none__` yields an empty allowlist; unknown names are dropped.
    """
    if raw.strip().lower() == "__none__":
        return ()
    seen: list[str] = []
    for chunk in raw.split(","):
        key = chunk.strip().lower()
        if not key or key in seen:
            continue
        if Route.parse(key).value != key:
            continue
        seen.append(key)
    return tuple(seen)
