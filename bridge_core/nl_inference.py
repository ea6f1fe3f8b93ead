"""Keyword heuristics that infer a route from free text with no prefix."""

from __future__ import annotations

import re
from typing import Any, Callable


MEMO_KEYWORDS = re.compile(r"(메모장|메모|기록|일지|회고|저널|다이어리)", re.IGNORECASE)
STATS_KEYWORDS = re.compile(r"(통계|요약|summary|status)", re.IGNORECASE)
MONEY_TOKEN = re.compile(
    r"(¥|￥|\$)\s*\d+|(?:\d[\d,]*(?:\.\d+)?)\s*(?:만엔|엔|円|jpy|원|krw|달러|usd|eur|유로)(?:\s|$)",
    re.IGNORECASE,
)
DAY_HEADER = re.compile(
    r"^\s*\d{1,2}\s*(월|화|수|목|금|토|일)(?:요일)?\s*$", re.MULTILINE
)
RANGE_HINT = re.compile(r"^\s*\d{4}\d{1,2}\s*[~\-]\s*\d{1,2}\s*$", re.MULTILINE)
ABS_PATH = re.compile(r"(?:~/|/)[A-Za-z0-9._\-/]+")

DEFAULT_PROJECT_BASE = "~/Projects"


def _has(pattern: str, text: str) -> bool:
    return re.search(pattern, text, re.IGNORECASE) is not None


def _strip_lead(pattern: str, text: str) -> str:
    stripped = re.sub(pattern, "", text, count=1, flags=re.IGNORECASE).strip()
    return stripped or text


def normalize_month_token(raw: str) -> str:
    token = (raw or "").strip()
    if re.fullmatch(r"\d{4}-\d{2}", token):
        return token
    if re.fullmatch(r"\d{6}", token):
        return f"{token[:4]}-{token[4:6]}"
    return ""


def is_likely_journal_block(text: str) -> bool:
    """A journal block is four or more lines carrying day headers like `16 월`."""
    raw = (text or "").replace("\r\n", "\n").replace("\r", "\n").strip()
    if not raw:
        return False
    lines = [line for line in (row.strip() for row in raw.split("\n")) if line]
    if len(lines) < 4:
        return False
    day_headers = len(DAY_HEADER.findall(raw))
    if RANGE_HINT.search(raw) and day_headers >= 1:
        return True
    return day_headers >= 2


def extract_memo_stats_payload(text: str) -> str | None:
    raw = (text or "").strip()
    if not raw or not MEMO_KEYWORDS.search(raw) or not STATS_KEYWORDS.search(raw):
        return None
    month_match = re.search(r"(20\d{2}-\d{2}|\d{6})", raw)
    month = normalize_month_token(month_match.group(1) if month_match else "")
    return f"통계 {month}" if month else "통계"


def infer_memo_payload(text: str) -> str | None:
    raw = (text or "").strip()
    if not raw:
        return None
    stats = extract_memo_stats_payload(raw)
    if stats:
        return stats
    if is_likely_journal_block(raw):
        return raw
    has_action = _has(r"(저장|정리|집계|통계|분석|추가|남겨|반영|업데이트|던져|올려)", raw)
    if MEMO_KEYWORDS.search(raw) and has_action:
        return _strip_lead(
            r"^(메모장|메모|기록|일지|회고|저널|다이어리)\s*(?:[:：]|으로|로|를|은|는)?\s*",
            raw,
        )
    return None


def infer_finance_payload(text: str) -> str | None:
    raw = (text or "").strip()
    if not raw:
        return None
    has_keyword = _has(
        r"(가계|가계부|지출|수입|환급|정산|이체|소비|입금|출금|결제|용돈|식비|교통비|월세|생활비"
        r"|finance|expense|income|refund|budget)",
        raw,
    )
    has_money = MONEY_TOKEN.search(raw) is not None
    has_workout = _has(r"(운동|러닝|달리기|헬스|요가|수영|사이클|걷기)", raw)

    if has_workout and not has_keyword:
        return None
    if not has_keyword and not has_money:
        return None
    if not has_money and not _has(r"(통계|요약|내역|목록|summary|list|status)", raw):
        return None
    return _strip_lead(r"^(가계부?|finance)\s*(?:로|에|를|는|은)?\s*", raw)


def infer_todo_payload(text: str) -> str | None:
    raw = (text or "").strip()
    if not raw:
        return None
    has_keyword = _has(r"(투두|todo|to-do|할일|할 일|task|체크리스트)", raw)
    has_action = _has(
        r"(추가|등록|완료|끝|체크|재개|다시|삭제|지움|목록|리스트|요약|통계"
        r"|status|list|done|remove|open|add)",
        raw,
    )
    if has_keyword and has_action:
        return _strip_lead(r"^(투두|todo|to-do|할일|할 일)\s*(?:로|에|를|는|은)?\s*", raw)
    if re.match(r"^(오늘\s*)?(할\s*일|해야\s*할\s*일)", raw, re.IGNORECASE):
        return raw
    return None


def infer_routine_payload(text: str) -> str | None:
    raw = (text or "").strip()
    if not raw or not _has(r"(루틴|습관|habit|routine|체크인)", raw):
        return None
    has_action = _has(
        r"(등록|추가|활성|비활성|켜|끄|체크|완료|오늘|목록|리스트|요약|통계|summary|status|check)",
        raw,
    )
    if not has_action and len(raw) > 40:
        return None
    return _strip_lead(r"^(루틴|습관)\s*(?:으로|로|에|를|는|은)?\s*", raw)


def infer_workout_payload(text: str) -> str | None:
    raw = (text or "").strip()
    if not raw:
        return None
    has_keyword = _has(
        r"(운동|헬스|러닝|달리기|런닝|조깅|걷기|산책|웨이트|스쿼트|벤치|푸쉬업|요가|필라테스"
        r"|수영|사이클|자전거|workout|run|running|gym|walk|swim|cycle)",
        raw,
    )
    has_metric = _has(
        r"(\d{1,4}\s*(분|min)|\d+(?:\.\d+)?\s*(km|킬로)|\d{2,5}\s*(kcal|칼로리))", raw
    )
    if not has_keyword and not has_metric:
        return None
    if not has_keyword and not _has(r"(기록|완료|했다|했어|함|로그)", raw):
        return None
    if MONEY_TOKEN.search(raw) and not has_keyword:
        return None
    return _strip_lead(r"^(운동|workout)\s*(?:으로|로|을|를|은|는)?\s*", raw)


def infer_browser_payload(text: str) -> str | None:
    raw = (text or "").strip()
    if not raw:
        return None
    has_browser = _has(r"(브라우저|browser|웹자동화|web automation)", raw)
    has_lookup = _has(r"(찾아|검색|search|열어|접속|이동|보여|조회|확인|추천|최신|인기)", raw)
    has_library = _has(r"(라이브러리|library|스킬|skill|문서|docs?)", raw)
    if not has_browser and not (has_library and has_lookup):
        return None

    url_match = re.search(r"https?://[^\s<>'\"`]+", raw, re.IGNORECASE)
    keyword_match = re.search(r"(?:키워드|keyword)\s*[:：]\s*([^\n;]+)", raw, re.IGNORECASE)
    if url_match:
        target_url = url_match.group(0)
    elif _has(r"(공식문서|문서|docs?)", raw):
        target_url = "https://docs.openclaw.ai/"
    elif keyword_match:
        keyword = keyword_match.group(1).strip().replace(" ", "+")
        target_url = f"https://clawhub.com/search?q={keyword}"
    else:
        target_url = "https://clawhub.com/"
    return f"액션: 브라우저; 작업: open; URL: {target_url}"


def infer_schedule_payload(text: str) -> str | None:
    raw = (text or "").strip()
    if not raw or not _has(r"(캘린더|calendar|일정|스케줄|schedule)", raw):
        return None
    if not _has(r"(확인|조회|보여|열어|체크|check|show|list|what|뭐|알려)", raw):
        return None
    return "액션: 일정; 작업: list"


def infer_status_payload(text: str) -> str | None:
    raw = (text or "").strip()
    if not raw:
        return None
    if not _has(r"(상태|현황|헬스|health|status|업타임|다운|장애|에러|오류|살아있|죽었|정상)", raw):
        return None
    is_direct = re.match(r"^(상태|현황|헬스|health|status)\b", raw, re.IGNORECASE) is not None
    has_scope = _has(
        r"(봇|bot|서버|컨테이너|daily|데일리|dev|개발봇|anki|리서치|research|오픈클로|openclaw"
        r"|시스템|운영|서비스|프롬프트|prompt)",
        raw,
    )
    if not is_direct and not has_scope:
        return None

    if _has(r"(전체|all|모든|봇들|bot들)", raw):
        return "all"
    for pattern, target in (
        (r"(데일리|daily)", "daily"),
        (r"(리서치|research|트렌드봇)", "research"),
        (r"(안키|anki)", "anki"),
        (r"(개발봇|개발|dev)", "dev"),
        (r"(프롬프트|prompt|웹앱|webapp)", "prompt"),
        (r"(터널|tunnel)", "tunnel"),
    ):
        if _has(pattern, raw):
            return target
    return ""


def infer_link_payload(text: str) -> str | None:
    raw = (text or "").strip()
    if not raw or _has(r"링크드인|linkedin", raw):
        return None
    if not _has(r"(링크|url|주소|접속|도메인)", raw):
        return None
    has_verb = _has(r"(줘|보내|알려|열어|확인|어디|뭐야|찾아)", raw)
    has_target = _has(
        r"(프롬프트|prompt|오픈클로|openclaw|웹앱|webapp|웹|web|대시보드|터널|tunnel|페이지)", raw
    )
    if not (has_verb or has_target):
        return None
    return raw


def extract_project_base_path(text: str) -> str:
    candidates: list[str] = []
    for match in ABS_PATH.findall(text or ""):
        value = match.rstrip("),.;:").strip()
        if value and value not in candidates:
            candidates.append(value)
    if not candidates:
        return ""
    for value in candidates:
        if re.search(r"/projects(?:/|$)", value, re.IGNORECASE):
            return value
    return candidates[0]


def infer_project_payload(text: str) -> str | None:
    raw = (text or "").strip()
    if not raw:
        return None
    has_noun = _has(r"(프로젝트|앱|app|웹앱|webapp|web app|게임|템플릿|boilerplate|scaffold)", raw)
    has_verb = _has(r"(만들|생성|초기화|세팅|setup|bootstrap|설치|깔아|구축)", raw)
    if not has_noun or not has_verb:
        return None

    name_match = re.search(
        r"(?:프로젝트명|이름|projectname|name)\s*[:：]?\s*([a-zA-Z0-9._-]{2,64})",
        raw,
        re.IGNORECASE,
    )
    rust_hint = _has(r"(rust|cargo|wasm|webassembly)", raw)
    game_hint = _has(r"(게임|game|tap|터치)", raw)
    if rust_hint:
        default_name = "rust-mobile-tap-game" if game_hint else "rust-wasm-app"
    else:
        default_name = "new-project"

    fields = [
        ("프로젝트명", name_match.group(1) if name_match else default_name),
        ("목표", re.sub(r"\s+", " ", raw)[:220]),
        ("스택", "rust wasm web game" if rust_hint else "web app"),
        ("경로", extract_project_base_path(raw) or DEFAULT_PROJECT_BASE),
        ("완료기준", "프로젝트 폴더와 기본 실행 파일 생성"),
        ("초기화", "execute"),
    ]
    return "; ".join(f"{key}: {value}" for key, value in fields)


def infer_report_payload(text: str) -> str | None:
    raw = (text or "").strip()
    if not raw or not _has(r"(리포트|report|보고서|브리핑|트렌드|동향|뉴스|소식|digest)", raw):
        return None
    if MEMO_KEYWORDS.search(raw) and STATS_KEYWORDS.search(raw):
        return None
    has_verb = _has(r"(줘|보내|작성|정리|만들|업데이트|발행|올려|요약)", raw)
    if not has_verb and len(raw) > 40:
        return None
    return raw


# (flag, route, rule name, inference function), evaluated in order.
INFERENCE_RULES: tuple[tuple[str, str, str, Callable[[str], str | None]], ...] = (
    ("inferMemo", "memo", "memo", infer_memo_payload),
    ("inferFinance", "finance", "finance", infer_finance_payload),
    ("inferTodo", "todo", "todo", infer_todo_payload),
    ("inferRoutine", "routine", "routine", infer_routine_payload),
    ("inferWorkout", "workout", "workout", infer_workout_payload),
    ("inferBrowser", "ops", "browser", infer_browser_payload),
    ("inferSchedule", "ops", "schedule", infer_schedule_payload),
    ("inferStatus", "status", "status", infer_status_payload),
    ("inferLink", "link", "link", infer_link_payload),
    ("inferProject", "project", "project", infer_project_payload),
    ("inferReport", "report", "report", infer_report_payload),
)


def infer_natural_language_route(
    text: str, routing: dict[str, bool], is_hub: bool
) -> dict[str, Any] | None:
    if not routing.get("enabled"):
        return None
    if routing.get("hubOnly") and not is_hub:
        return None
    normalized = (text or "").strip()
    if not normalized:
        return None

    for flag, route, rule, infer in INFERENCE_RULES:
        if not routing.get(flag):
            continue
        payload = infer(normalized)
        if payload is not None:
            return {
                "route": route,
                "payload": payload,
                "inferred_by": f"natural-language:{rule}",
            }
    return None
