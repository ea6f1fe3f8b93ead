"""Static capability risk table and ops-field normalization."""

from __future__ import annotations

import copy
import re
from typing import Any


def _auto(tier: str = "MEDIUM") -> dict[str, Any]:
    return {"risk_tier": tier, "requires_approval": False, "required_flags": []}


def _gated(tier: str = "HIGH", flags: tuple[str, ...] = ("force",)) -> dict[str, Any]:
    return {"risk_tier": tier, "requires_approval": True, "required_flags": list(flags)}


OPS_ACTION_ALIASES: dict[str, tuple[str, ...]] = {
    "restart": ("재시작", "restart", "리스타트"),
    "file": ("파일", "file", "파일제어"),
    "exec": ("실행", "exec", "run"),
    "approve": ("승인", "approve"),
    "deny": ("거부", "deny", "reject"),
    "status": ("상태", "status"),
    "mail": ("메일", "mail", "email"),
    "schedule": ("일정", "schedule", "calendar", "캘린더"),
    "photo": ("사진", "photo"),
    "browser": ("브라우저", "browser"),
    "bot": ("봇", "bot"),
}

CAPABILITY_ACTION_ALIASES: dict[str, dict[str, tuple[str, ...]]] = {
    "mail": {
        "list": ("list", "목록", "조회"),
        "summary": ("summary", "요약"),
        "send": ("send", "전송", "보내기", "발송"),
    },
    "schedule": {
        "list": ("list", "목록", "조회"),
        "create": ("create", "add", "추가", "생성", "등록"),
        "update": ("update", "수정", "변경"),
        "delete": ("delete", "remove", "삭제"),
    },
    "photo": {
        "list": ("list", "목록", "조회"),
        "capture": ("capture", "촬영", "캡처"),
        "cleanup": ("cleanup", "정리", "삭제"),
    },
    "browser": {
        "open": ("open", "열기", "접속"),
        "list": ("list", "목록"),
        "click": ("click", "클릭"),
        "type": ("type", "입력"),
        "checkout": ("checkout", "결제", "구매"),
        "post": ("post", "게시"),
        "send": ("send", "전송"),
    },
    "bot": {
        "list": ("list", "목록"),
        "status": ("status", "상태"),
        "dispatch": ("dispatch", "위임", "전달"),
        "restart": ("restart", "재시작"),
    },
}

FILE_INTENT_ALIASES: dict[str, tuple[str, ...]] = {
    "list_files": ("list_files", "list", "목록", "ls"),
    "compute_plan": ("compute_plan", "plan", "계획", "preview"),
    "move": ("move", "이동"),
    "rename": ("rename", "이름변경", "ren"),
    "archive": ("archive", "보관"),
    "trash": ("trash", "delete", "삭제", "휴지통"),
    "restore": ("restore", "복원"),
    "drive_preflight_check": ("drive_preflight_check", "preflight", "drive_check", "드라이브점검"),
    "git_status": ("git_status", "git status", "git-status"),
    "git_diff": ("git_diff", "git diff", "git-diff"),
    "git_mv": ("git_mv", "git mv", "git-mv"),
    "git_add": ("git_add", "git add", "git-add"),
    "git_commit": ("git_commit", "git commit", "git-commit"),
    "git_push": ("git_push", "git push", "git-push"),
}

READ_ONLY_FILE_INTENTS = {
    "list_files",
    "compute_plan",
    "drive_preflight_check",
    "git_status",
    "git_diff",
}


def file_intent_policy(intent: str) -> dict[str, Any]:
    if intent in READ_ONLY_FILE_INTENTS:
        return _auto()
    if intent == "git_push":
        return _gated("GIT_AWARE", ("force", "push"))
    return _gated()


# Keyed by capability, then by normalized action (file: by intent).
DEFAULT_CAPABILITY_POLICY: dict[str, dict[str, dict[str, Any]]] = {
    "mail": {"list": _auto(), "summary": _auto(), "send": _gated()},
    "schedule": {
        "list": _auto(),
        "create": _gated(flags=()),
        "update": _gated(flags=()),
        "delete": _gated(),
    },
    "photo": {"list": _auto(), "capture": _auto(), "cleanup": _gated()},
    "browser": {
        "open": _auto(),
        "list": _auto(),
        "click": _auto(),
        "type": _auto(),
        "checkout": _gated(),
        "post": _gated(),
        "send": _gated(),
    },
    "exec": {"run": _gated(flags=())},
    "bot": {"list": _auto(), "status": _auto(), "dispatch": _auto(), "restart": _auto()},
    "file": {intent: file_intent_policy(intent) for intent in FILE_INTENT_ALIASES},
}

# Payload key for each capability template field.
CAPABILITY_PAYLOAD_FIELDS = {
    "계정": "account",
    "수신자": "recipient",
    "제목": "subject",
    "본문": "body",
    "시간": "time",
    "식별자": "id",
    "내용": "content",
    "URL": "url",
    "셀렉터": "selector",
    "값": "value",
    "명령": "command",
    "대상": "target",
}


def default_capability_policy() -> dict[str, dict[str, dict[str, Any]]]:
    return copy.deepcopy(DEFAULT_CAPABILITY_POLICY)


def _lookup(raw: Any, table: dict[str, tuple[str, ...]]) -> str | None:
    key = re.sub(r"\s+", " ", str(raw or "").strip().lower())
    if not key:
        return None
    for canonical, aliases in table.items():
        if key in aliases:
            return canonical
    return None


def normalize_ops_action(raw: Any) -> str | None:
    return _lookup(raw, OPS_ACTION_ALIASES)


def normalize_capability_action(capability: str, raw: Any) -> str | None:
    if capability == "exec":
        # The exec `작업` field carries the command line itself.
        return "run"
    return _lookup(raw, CAPABILITY_ACTION_ALIASES.get(capability, {}))


def normalize_file_intent(raw: Any) -> str | None:
    return _lookup(raw, FILE_INTENT_ALIASES)


def normalize_option_flags(raw: Any) -> list[str]:
    values = raw if isinstance(raw, list) else re.split(r"[\s,]+", str(raw or ""))
    out: list[str] = []
    for value in values:
        key = str(value or "").strip().lower().lstrip("-")
        if key and key not in out:
            out.append(key)
    return out


def build_capability_payload(fields: dict[str, str]) -> dict[str, Any]:
    return {
        key: str(fields[name]).strip()
        for name, key in CAPABILITY_PAYLOAD_FIELDS.items()
        if str(fields.get(name) or "").strip()
    }
