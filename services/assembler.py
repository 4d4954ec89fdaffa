"""Budgeted assembler: turn a user's records into ordered prompt fragments.

Order is fixed: header, profile, notes (newest first), files (newest first),
integrations (grouped by source, newest first). Every non-marker fragment is
charged against the ceiling before it is committed. When a record does not
fit, its section gets one "truncated" marker and the assembler moves on to
the next section.

Images and PDFs also reserve a fixed per-item allowance; the content itself
is fetched later by the resolver.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import config
from services.collector import UserRecords
from services.fragments import IMAGE, PDF, PENDING_BINARY, TEXT, AssembledPrompt, Fragment

PROFILE = "profile"
NOTES = "notes"
FILES = "files"
INTEGRATIONS = "integrations"
HEADER = "header"

SECTION_HEADERS = {
    PROFILE: "== User Profile ==\n",
    NOTES: "== Notes ==\n",
    FILES: "== Uploaded Files (metadata & content references) ==\n",
    INTEGRATIONS: "== Integrations (third-party fitness activity) ==\n",
}

EMPTY_LINES = {
    PROFILE: "No profile data available.\n---\n",
    NOTES: "No notes available.\n---\n",
    FILES: "No files available.\n---\n",
    INTEGRATIONS: "No integration data available.\n---\n",
}

TRUNCATED_MARKERS = {
    PROFILE: "[Profile truncated - context limit]\n---\n",
    NOTES: "[Note truncated - context limit]\n---\n",
    FILES: "[File truncated - context limit]\n---\n",
    INTEGRATIONS: "[Integration activity truncated - context limit]\n---\n",
}

_CONTENT_INCLUDED = {
    IMAGE: "  (Image content included below)\n---\n",
    PDF: "  (PDF content included via file reference)\n---\n",
}
_CONTENT_SKIPPED = {
    IMAGE: "  (Image content skipped - context limit)\n---\n",
    PDF: "  (PDF content skipped - context limit)\n---\n",
}
_CONTENT_NOT_PROCESSED = "  (Content not processed for this file type)\n---\n"

FOOT_ACTIVITIES = {"run", "trailrun", "virtualrun", "walk", "hike"}
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def estimate_cost(text: str) -> float:
    """Approximate prompt cost of `text`: character count / 4.

    This is not a tokenizer. The ceiling and the image/PDF allowances were
    tuned against this ratio; a real tokenizer needs new constants.
    """
    return len(text) / 4


def parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        dt = value
    elif value:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_timestamp(value: Any) -> str:
    dt = parse_timestamp(value)
    if dt is None:
        return str(value) if value else "unknown"
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


def newest_first(rows: list[dict], *keys: str) -> list[dict]:
    def sort_key(row: dict) -> datetime:
        for k in keys:
            dt = parse_timestamp(row.get(k))
            if dt is not None:
                return dt
        return _EPOCH

    # sorted() is stable with reverse=True, so ties keep input order.
    return sorted(rows, key=sort_key, reverse=True)


def format_duration(seconds: float | None) -> str | None:
    if not seconds or seconds <= 0:
        return None
    total = int(round(seconds))
    h, rem = divmod(total, 3600)
    m, s = divmod(rem, 60)
    return f"{h}:{m:02d}:{s:02d}"


def pace_per_km(distance_m: float | None, moving_time_s: float | None,
                average_speed_mps: float | None = None) -> str | None:
    """Pace as m:ss/km, from time over distance or else from average speed."""
    seconds_per_km = None
    if distance_m and moving_time_s and distance_m > 0 and moving_time_s > 0:
        seconds_per_km = moving_time_s / (distance_m / 1000.0)
    elif average_speed_mps and average_speed_mps > 0:
        seconds_per_km = 1000.0 / average_speed_mps
    if seconds_per_km is None:
        return None
    m, s = divmod(int(round(seconds_per_km)), 60)
    return f"{m}:{s:02d}/km"


def speed_kmh(distance_m: float | None, moving_time_s: float | None,
              average_speed_mps: float | None = None) -> str | None:
    if average_speed_mps and average_speed_mps > 0:
        return f"{average_speed_mps * 3.6:.1f} km/h"
    if distance_m and moving_time_s and distance_m > 0 and moving_time_s > 0:
        return f"{(distance_m / moving_time_s) * 3.6:.1f} km/h"
    return None


def _num(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def render_profile(profile: dict | None) -> str | None:
    if not profile:
        return None
    lines = []
    if profile.get("name"):
        lines.append(f"Name: {profile['name']}")
    if profile.get("age") is not None:
        lines.append(f"Age: {profile['age']}")
    if profile.get("weight") is not None:
        lines.append(f"Weight: {profile['weight']} kg")
    if profile.get("height") is not None:
        lines.append(f"Height: {profile['height']} cm")
    if profile.get("sex"):
        lines.append(f"Sex: {profile['sex']}")
    if not lines:
        return None
    return "\n".join(lines) + "\n---\n"


def render_note(note: dict) -> str:
    return f"[Note Timestamp: {format_timestamp(note.get('created_at'))}]\n{note.get('text') or ''}\n---\n"


def render_file_metadata(file: dict) -> str:
    category = file.get("category")
    if category:
        sub = file.get("subcategory")
        category_info = f"Category: {category}/{sub}" if sub else f"Category: {category}"
    else:
        category_info = "Category: unknown"
    return (
        f"[File Name: {file.get('file_name')}, Timestamp: {format_timestamp(file.get('created_at'))}, "
        f"Type: {file.get('mime_type') or 'unknown'}, {category_info}]\n"
    )


def binary_type(file: dict) -> str | None:
    if not file.get("storage_path"):
        return None
    mime = (file.get("mime_type") or "").lower()
    if mime.startswith("image/"):
        return IMAGE
    if mime == "application/pdf":
        return PDF
    return None


def render_activity(activity: dict) -> str:
    kind = activity.get("activity_type") or "Activity"
    is_foot = kind.replace(" ", "").lower() in FOOT_ACTIVITIES
    distance = _num(activity.get("distance_m"))
    moving = _num(activity.get("moving_time_s"))
    speed = _num(activity.get("average_speed_mps"))
    cadence = _num(activity.get("average_cadence"))
    elevation = _num(activity.get("total_elevation_gain_m"))
    heartrate = _num(activity.get("average_heartrate"))

    parts = [
        f"Activity Timestamp: {format_timestamp(activity.get('start_date') or activity.get('created_at'))}",
        f"Source: {activity.get('integration_type') or 'unknown'}",
        f"Type: {kind}",
    ]
    if activity.get("name"):
        parts.append(f"Name: {activity['name']}")
    if distance:
        parts.append(f"Distance: {distance / 1000.0:.2f} km")
    duration = format_duration(moving)
    if duration:
        parts.append(f"Moving Time: {duration}")
    if is_foot:
        pace = pace_per_km(distance, moving, speed)
        if pace:
            parts.append(f"Pace: {pace}")
    else:
        kmh = speed_kmh(distance, moving, speed)
        if kmh:
            parts.append(f"Speed: {kmh}")
    if cadence:
        # Strava reports run cadence per leg.
        if is_foot:
            parts.append(f"Cadence: {int(round(cadence * 2))} spm")
        else:
            parts.append(f"Cadence: {int(round(cadence))} rpm")
    if elevation:
        parts.append(f"Elevation Gain: {elevation:.0f} m")
    if heartrate:
        parts.append(f"Avg Heart Rate: {heartrate:.0f} bpm")
    return "[" + ", ".join(parts) + "]\n"


class _Budget:
    def __init__(self, ceiling: float):
        self.ceiling = ceiling
        self.running = 0.0
        self.fragments: list[Fragment] = []
        self.truncated: list[str] = []

    def fits(self, cost: float) -> bool:
        return self.running + cost <= self.ceiling

    def _append(self, **kwargs) -> Fragment:
        frag = Fragment(position=len(self.fragments), **kwargs)
        self.fragments.append(frag)
        return frag

    def add_text(self, section: str, text: str) -> bool:
        cost = estimate_cost(text)
        if not self.fits(cost):
            return False
        self.running += cost
        self._append(kind=TEXT, section=section, text=text, cost=cost)
        return True

    def add_pending(self, section: str, file: dict, kind: str, allowance: float) -> None:
        self.running += allowance
        self._append(kind=PENDING_BINARY, section=section, cost=allowance, binary_type=kind, file=dict(file))

    def truncate(self, section: str) -> None:
        text = TRUNCATED_MARKERS[section]
        self._append(kind=TEXT, section=section, text=text, cost=estimate_cost(text), marker=True)
        self.truncated.append(section)


def _open_section(budget: _Budget, section: str, has_rows: bool) -> bool:
    if not budget.add_text(section, SECTION_HEADERS[section]):
        budget.truncate(section)
        return False
    if not has_rows:
        if not budget.add_text(section, EMPTY_LINES[section]):
            budget.truncate(section)
        return False
    return True


def _add_profile(budget: _Budget, profile: dict | None) -> None:
    text = render_profile(profile)
    if not _open_section(budget, PROFILE, text is not None):
        return
    if not budget.add_text(PROFILE, text):
        budget.truncate(PROFILE)


def _add_notes(budget: _Budget, notes: list[dict]) -> None:
    if not _open_section(budget, NOTES, bool(notes)):
        return
    for note in newest_first(notes, "created_at"):
        if not budget.add_text(NOTES, render_note(note)):
            budget.truncate(NOTES)
            return


def _add_files(budget: _Budget, files: list[dict], allowances: dict[str, float]) -> None:
    if not _open_section(budget, FILES, bool(files)):
        return
    for file in newest_first(files, "created_at"):
        meta = render_file_metadata(file)
        kind = binary_type(file)
        if kind is None:
            if not budget.add_text(FILES, meta + _CONTENT_NOT_PROCESSED):
                budget.truncate(FILES)
                return
            continue

        included = meta + _CONTENT_INCLUDED[kind]
        if budget.fits(estimate_cost(included) + allowances[kind]):
            budget.add_text(FILES, included)
            budget.add_pending(FILES, file, kind, allowances[kind])
        elif not budget.add_text(FILES, meta + _CONTENT_SKIPPED[kind]):
            budget.truncate(FILES)
            return


def _add_integrations(budget: _Budget, activities: list[dict]) -> None:
    if not _open_section(budget, INTEGRATIONS, bool(activities)):
        return
    groups: dict[str, list[dict]] = {}
    for activity in activities:
        groups.setdefault(activity.get("integration_type") or "unknown", []).append(activity)
    for integration_type in sorted(groups):
        if not budget.add_text(INTEGRATIONS, f"-- {integration_type} --\n"):
            budget.truncate(INTEGRATIONS)
            return
        for activity in newest_first(groups[integration_type], "start_date", "created_at"):
            if not budget.add_text(INTEGRATIONS, render_activity(activity)):
                budget.truncate(INTEGRATIONS)
                return
        budget.add_text(INTEGRATIONS, "---\n")


def assemble_prompt(records: UserRecords, *, ceiling: float | None = None,
                    image_cost: float | None = None, pdf_cost: float | None = None,
                    now: datetime | None = None) -> AssembledPrompt:
    """Build the ordered, budgeted fragment list for one report request."""
    ceiling = config.MAX_CONTEXT_TOKENS_APPROX if ceiling is None else ceiling
    allowances = {
        IMAGE: config.IMAGE_TOKEN_COST if image_cost is None else image_cost,
        PDF: config.PDF_TOKEN_COST if pdf_cost is None else pdf_cost,
    }
    now = now or datetime.now(timezone.utc)

    budget = _Budget(ceiling)
    header = (
        f"Current Date & Time: {format_timestamp(now)}\n"
        "User Health Data Context (sorted by timestamp where available):\n---\n"
    )
    if not budget.add_text(HEADER, header):
        raise ValueError(f"Context ceiling {ceiling} is smaller than the prompt header")

    _add_profile(budget, records.profile)
    _add_notes(budget, records.notes)
    _add_files(budget, records.files, allowances)
    _add_integrations(budget, records.integrations)

    return AssembledPrompt(fragments=budget.fragments, ceiling=ceiling, truncated=budget.truncated)
