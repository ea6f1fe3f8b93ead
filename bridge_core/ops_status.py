"""Container state buckets and the status reply."""

from __future__ import annotations

import re
from typing import Any, Iterable


STATE_BUCKETS = ("running", "restarting", "paused", "created", "stopped", "missing", "unknown")


def normalize_state_bucket(state: str = "", status_text: str = "") -> str:
    state = str(state or "").strip().lower()
    status = str(status_text or "").strip().lower()
    if state == "running" or re.match(r"^up\b", status):
        return "running"
    if state == "restarting" or re.match(r"^restarting\b", status):
        return "restarting"
    if state == "paused":
        return "paused"
    if state == "created":
        return "created"
    if (
        state in {"exited", "dead"}
        or status == "not-running"
        or re.search(r"\bexited\b", status)
    ):
        return "stopped"
    if status == "not-found":
        return "missing"
    return "unknown"


def _rows_for_targets(
    live: dict[str, dict[str, str]], targets: Iterable[str]
) -> list[dict[str, str]]:
    rows = []
    for name in targets:
        row = live.get(name)
        if row is None:
            rows.append({"name": name, "state": "missing", "status_text": "not-found"})
            continue
        rows.append(
            {
                "name": name,
                "state": normalize_state_bucket(row.get("state", ""), row["status_text"]),
                "status_text": row["status_text"],
            }
        )
    return rows


def rows_from_docker_lines(raw_lines: str, targets: Iterable[str]) -> list[dict[str, str]]:
    """Parse `name<TAB>state<TAB>status` lines as printed by `docker ps`."""
    live: dict[str, dict[str, str]] = {}
    for line in str(raw_lines or "").splitlines():
        parts = line.split("\t")
        if len(parts) < 2 or not parts[0].strip():
            continue
        name = parts[0].strip()
        state = parts[1].strip()
        status = "\t".join(parts[2:]).strip() or state or "unknown"
        live[name] = {"state": state, "status_text": status}
    return _rows_for_targets(live, targets)


def rows_from_snapshot(snapshot: dict[str, Any], targets: Iterable[str]) -> list[dict[str, str]]:
    live: dict[str, dict[str, str]] = {}
    containers = snapshot.get("containers") if isinstance(snapshot, dict) else None
    for row in containers if isinstance(containers, list) else []:
        if not isinstance(row, dict):
            continue
        name = str(row.get("name") or "").strip()
        if name:
            live[name] = {"status_text": str(row.get("status") or "").strip() or "unknown"}
    return _rows_for_targets(live, targets)


def build_status_reply(rows: list[dict[str, str]], snapshot_updated_at: str = "") -> str:
    if not rows:
        return "운영 상태: 대상 정보가 없습니다."

    counts = {bucket: 0 for bucket in STATE_BUCKETS}
    for row in rows:
        bucket = row.get("state") or "unknown"
        counts[bucket] = counts.get(bucket, 0) + 1

    summary = [f"running {counts['running']}", f"stopped {counts['stopped']}", f"missing {counts['missing']}"]
    summary += [f"{b} {counts[b]}" for b in ("restarting", "paused", "created", "unknown") if counts[b]]

    title = f"운영 상태(스냅샷 {snapshot_updated_at}):" if snapshot_updated_at else "운영 상태:"
    lines = [title, f"- 요약: {', '.join(summary)}"]
    lines += [f"- {row['name']}: {row['status_text']}" for row in rows]
    return "\n".join(lines)
