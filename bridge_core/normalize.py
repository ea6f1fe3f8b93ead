"""Transport-envelope cleanup and approval shorthand parsing."""

from __future__ import annotations

import re
from typing import Any


TRANSPORT_NAMES = (
    "Telegram",
    "WhatsApp",
    "Discord",
    "Slack",
    "Signal",
    "Line",
    "Matrix",
    "KakaoTalk",
    "Kakao",
    "iMessage",
    "SMS",
)

_MESSAGE_ID_RE = re.compile(r"\s*\[message_id:\s*\d+\]\s*$", re.IGNORECASE)
_REPLY_BLOCK_RE = re.compile(r"\s*\[Replying to [^\]]+\][\s\S]*$", re.IGNORECASE)
_ENVELOPE_RE = re.compile(
    r"^\s*\[(?:" + "|".join(TRANSPORT_NAMES) + r")\b[^\]]*\]\s*([\s\S]*)$",
    re.IGNORECASE,
)
_RELAY_DOLLAR_RE = re.compile(r"^\s*\$(?=\S)")

TOKEN_PATTERN = r"apv_[a-f0-9]{16}"
_FLAGS_PATTERN = r"((?:\s+--?[A-Za-z][\w-]*)*)"
_APPROVE_RE = re.compile(
    r"^\s*(?:approve|승인)\s+(" + TOKEN_PATTERN + r")" + _FLAGS_PATTERN + r"\s*$",
    re.IGNORECASE,
)
_DENY_RE = re.compile(
    r"^\s*(?:deny|reject|거부)\s+(" + TOKEN_PATTERN + r")\s*$",
    re.IGNORECASE,
)
_NATURAL_APPROVE_RE = re.compile(
    r"^\s*(?:ok\s*)?(?:approve|approved|승인|승인해|승인해줘|승인할게|승인합니다)\s*[.!]*\s*$",
    re.IGNORECASE,
)
_NATURAL_DENY_RE = re.compile(
    r"^\s*(?:deny|reject|거부|거부해|거부해줘|거부합니다)\s*[.!]*\s*$",
    re.IGNORECASE,
)


def normalize_incoming_text(text: str | None) -> str:
    out = str(text or "").replace("\r\n", "\n").replace("\r", "\n").strip()
    if not out:
        return ""
    out = _MESSAGE_ID_RE.sub("", out).strip()
    out = _REPLY_BLOCK_RE.sub("", out).strip()
    envelope = _ENVELOPE_RE.match(out)
    if envelope:
        out = envelope.group(1).strip()
    out = _RELAY_DOLLAR_RE.sub("", out).strip()
    return out


def parse_flags(raw: str) -> list[str]:
    flags: list[str] = []
    for chunk in re.split(r"[\s,]+", raw or ""):
        key = chunk.strip().lstrip("-").lower()
        if key and key not in flags:
            flags.append(key)
    return flags


def parse_approve_shorthand(text: str) -> dict[str, Any] | None:
    m = _APPROVE_RE.match(text or "")
    if not m:
        return None
    token = m.group(1)
    flags = parse_flags(m.group(2) or "")
    parts = ["액션: 승인", f"토큰: {token}"]
    if flags:
        parts.append("옵션: " + " ".join(f"--{flag}" for flag in flags))
    return {"token": token, "flags": flags, "normalized_payload": "; ".join(parts)}


def parse_deny_shorthand(text: str) -> dict[str, Any] | None:
    m = _DENY_RE.match(text or "")
    if not m:
        return None
    token = m.group(1)
    return {
        "token": token,
        "flags": [],
        "normalized_payload": f"액션: 거부; 토큰: {token}",
    }


def parse_natural_approval(text: str) -> dict[str, Any] | None:
    """Recognize a bare "approve"/"deny" with no token."""
    if _NATURAL_APPROVE_RE.match(text or ""):
        return {"decision": "approve", "normalized_payload": "액션: 승인"}
    if _NATURAL_DENY_RE.match(text or ""):
        return {"decision": "deny", "normalized_payload": "액션: 거부"}
    return None
