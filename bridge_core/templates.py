"""`key: value` command templates for work/inspect/deploy/project/ops."""

from __future__ import annotations

import re
from typing import Any


API_ALIASES = ["api", "API", "모델경로", "api경로", "lane"]
VALID_API_VALUES = ("auto", "oauth", "key")

COMMAND_TEMPLATE_SCHEMA: dict[str, dict[str, Any]] = {
    "work": {
        "display_name": "작업",
        "required": ["요청", "대상", "완료기준"],
        "optional": ["제약", "우선순위", "기한", "API"],
        "aliases": {
            "요청": ["요청", "목표", "작업", "task", "goal"],
            "대상": ["대상", "범위", "target", "scope", "repo", "파일"],
            "완료기준": ["완료기준", "성공기준", "done", "acceptance"],
            "제약": ["제약", "조건", "constraint"],
            "우선순위": ["우선순위", "priority"],
            "기한": ["기한", "due", "deadline"],
            "API": API_ALIASES,
        },
    },
    "inspect": {
        "display_name": "점검",
        "required": ["대상", "체크항목"],
        "optional": ["출력형식", "심각도기준", "API"],
        "aliases": {
            "대상": ["대상", "범위", "target", "scope"],
            "체크항목": ["체크항목", "점검항목", "check", "checklist"],
            "출력형식": ["출력형식", "형식", "format"],
            "심각도기준": ["심각도기준", "severity"],
            "API": API_ALIASES,
        },
    },
    "deploy": {
        "display_name": "배포",
        "required": ["대상", "환경", "검증"],
        "optional": ["롤백", "승인자", "API"],
        "aliases": {
            "대상": ["대상", "서비스", "target", "service"],
            "환경": ["환경", "env", "environment"],
            "검증": ["검증", "검증방법", "verify"],
            "롤백": ["롤백", "rollback"],
            "승인자": ["승인자", "approver"],
            "API": API_ALIASES,
        },
    },
    "project": {
        "display_name": "프로젝트",
        "required": ["프로젝트명", "목표", "스택", "경로", "완료기준"],
        "optional": ["초기화", "제약", "API"],
        "aliases": {
            "프로젝트명": ["프로젝트명", "이름", "project", "projectname", "name"],
            "목표": ["목표", "요청", "objective", "goal"],
            "스택": ["스택", "기술스택", "stack", "tech"],
            "경로": ["경로", "path", "directory", "dir"],
            "완료기준": ["완료기준", "done", "acceptance", "success"],
            "초기화": ["초기화", "init", "bootstrap"],
            "제약": ["제약", "constraint"],
            "API": API_ALIASES,
        },
    },
    "ops": {
        "display_name": "운영",
        "required": ["액션"],
        "optional": [
            "대상", "사유", "작업", "경로", "대상경로", "패턴", "저장소", "커밋메시지",
            "토큰", "옵션", "계정", "수신자", "제목", "본문", "시간", "식별자", "내용",
            "URL", "셀렉터", "값", "명령",
        ],
        "aliases": {
            "액션": ["액션", "action"],
            "대상": ["대상", "target", "서비스"],
            "사유": ["사유", "reason", "메모"],
            "작업": ["작업", "task", "operation", "intent"],
            "경로": ["경로", "path", "source", "src"],
            "대상경로": ["대상경로", "targetpath", "destination", "dst"],
            "패턴": ["패턴", "pattern", "glob"],
            "저장소": ["저장소", "repository", "repo"],
            "커밋메시지": ["커밋메시지", "commitmessage", "message"],
            "토큰": ["토큰", "token", "approval"],
            "옵션": ["옵션", "option", "flags"],
            "계정": ["계정", "account", "mailbox", "profile"],
            "수신자": ["수신자", "recipient", "to", "email"],
            "제목": ["제목", "subject"],
            "본문": ["본문", "body"],
            "시간": ["시간", "time", "schedule_at", "when"],
            "식별자": ["식별자", "id", "event_id", "schedule_id"],
            "내용": ["내용", "content", "note"],
            "URL": ["url", "URL", "링크", "주소"],
            "셀렉터": ["셀렉터", "selector", "ref"],
            "값": ["값", "value", "text"],
            "명령": ["명령", "command", "cmd"],
        },
    },
}

_FIELD_RE = re.compile(r"^([^:：]+?)\s*[:：]\s*(.+)$")


def _compact(value: str) -> str:
    return re.sub(r"\s+", "", value).lower()


def normalize_template_key(route: str, raw_key: str) -> str | None:
    schema = COMMAND_TEMPLATE_SCHEMA.get(route)
    if not schema:
        return None
    key = _compact(raw_key)
    for canonical, aliases in schema["aliases"].items():
        if any(key == _compact(alias) for alias in aliases):
            return canonical
    return None


def parse_template_fields(route: str, payload: str) -> dict[str, str]:
    fields: dict[str, str] = {}
    for token in re.split(r"\n|;", payload or ""):
        m = _FIELD_RE.match(token.strip())
        if not m:
            continue
        canonical = normalize_template_key(route, m.group(1))
        value = m.group(2).strip()
        if canonical and value:
            fields[canonical] = value
    return fields


def build_template_guide(route: str) -> str:
    schema = COMMAND_TEMPLATE_SCHEMA.get(route)
    if not schema:
        return "지원하지 않는 템플릿입니다."
    required = "\n".join(f"{k}: ..." for k in schema["required"])
    optional = "\n".join(f"{k}: ..." for k in schema["optional"])
    example = "; ".join(f"{k}: ..." for k in schema["required"])
    lines = [f"[{schema['display_name']} 템플릿]", required]
    if optional:
        lines.append(f"\n(선택)\n{optional}")
    lines.append("\n예시:")
    lines.append(f"{schema['display_name']}: {example}")
    return "\n".join(lines)


def parse_structured_command(route: str, payload: str) -> dict[str, Any]:
    schema = COMMAND_TEMPLATE_SCHEMA.get(route)
    if not schema:
        return {"ok": False, "missing": [], "error": "unknown template route"}

    text = (payload or "").strip()
    if not text or re.fullmatch(r"(도움말|help|템플릿)", text, re.IGNORECASE):
        return {
            "ok": False,
            "missing": list(schema["required"]),
            "telegramReply": build_template_guide(route),
        }

    fields = parse_template_fields(route, text)
    if "API" in fields:
        api_value = fields["API"].strip().lower()
        if api_value not in VALID_API_VALUES:
            return {
                "ok": False,
                "missing": [],
                "fields": fields,
                "telegramReply": (
                    f"{schema['display_name']} 템플릿 오류: "
                    "API 값은 auto|oauth|key 만 허용됩니다."
                ),
            }
        fields["API"] = api_value

    missing = [key for key in schema["required"] if not fields.get(key)]
    if missing:
        return {
            "ok": False,
            "missing": missing,
            "fields": fields,
            "telegramReply": (
                f"{schema['display_name']} 템플릿 누락: {', '.join(missing)}\n\n"
                f"{build_template_guide(route)}"
            ),
        }

    ordered = "\n".join(
        f"{key}: {fields[key]}"
        for key in [*schema["required"], *schema["optional"]]
        if fields.get(key)
    )
    return {
        "ok": True,
        "fields": fields,
        "missing": [],
        "normalizedInstruction": ordered,
        "needsApproval": route == "deploy",
        "telegramReply": f"{schema['display_name']} 템플릿 확인 완료",
    }
