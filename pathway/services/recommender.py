"""University recommendations built from the student's profile."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Callable

from sqlalchemy.orm import Session

from pathway.models import SavedUniversity
from pathway.services import gemini

logger = logging.getLogger(__name__)

DEFAULT_COUNT = 8
MAX_COUNT = 15

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)
_OPENING_RE = re.compile(r"[\[{]")
_decoder = json.JSONDecoder()

_PROFILE_LABELS = (
    ("intended_major", "Intended major"),
    ("study_level", "Study level"),
    ("budget", "Annual budget (USD)"),
    ("preferred_country", "Preferred country"),
    ("preferred_university_type", "Preferred university type"),
    ("sat_score", "SAT"),
    ("act_score", "ACT"),
    ("english_test_type", "English test"),
    ("english_test_score", "English test score"),
    ("high_school_curriculum", "High school curriculum"),
)


@dataclass
class University:
    name: str
    country: str | None = None
    city: str | None = None
    programs: list[str] = field(default_factory=list)
    tuition: str | None = None
    acceptance_rate: str | None = None
    category: str | None = None  # reach | match | safety
    match_score: int | None = None
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _format_activities(activities: Any) -> list[str]:
    lines = []
    for item in activities or []:
        if not isinstance(item, dict):
            continue
        name = item.get("name") or item.get("organization")
        if not name:
            continue
        position = item.get("position")
        lines.append(f"- {name}" + (f" ({position})" if position else ""))
    return lines


def build_recommendation_prompt(
    preferences: dict[str, Any],
    *,
    notes: str | None = None,
    count: int = DEFAULT_COUNT,
) -> str:
    lines = ["STUDENT PROFILE:"]
    for key, label in _PROFILE_LABELS:
        value = preferences.get(key)
        if value not in (None, "", []):
            lines.append(f"{label}: {value}")
    grades = preferences.get("curriculum_grades")
    if isinstance(grades, dict) and grades:
        lines.append(
            "Grades: " + ", ".join(f"{subject} {grade}" for subject, grade in grades.items())
        )
    domains = preferences.get("selected_domains")
    if domains:
        lines.append("Fields of interest: " + ", ".join(map(str, domains)))
    activities = _format_activities(preferences.get("extracurricular_activities"))
    if activities:
        lines.append("Extracurricular activities:")
        lines.extend(activities)
    if notes:
        lines.append(f"Additional notes: {notes}")

    return (
        "You are Pathway AI, an expert university admissions consultant. "
        f"Recommend {count} universities for the student below, mixing reach, "
        "match and safety options that fit the budget and preferences.\n\n"
        + "\n".join(lines)
        + "\n\nRespond with ONLY a JSON array. Each item must have the keys "
        '"name", "country", "city", "programs" (list of strings), "tuition", '
        '"acceptance_rate", "category" ("reach", "match" or "safety"), '
        '"match_score" (0-100) and "reason".'
    )


def _clamp_score(value: Any) -> int | None:
    try:
        score = int(round(float(value)))
    except (TypeError, ValueError):
        return None
    return max(0, min(100, score))


def _clean_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _load_payload(text: str) -> Any:
    """Decode the first JSON array or object in ``text``.

    Models sometimes wrap the JSON in prose or a markdown fence even in JSON
    mode, so fences are dropped and each ``[``/``{`` is tried in turn.
    """
    raw = _FENCE_RE.sub("", text).strip()
    if not raw:
        return []
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        error = exc
    for match in _OPENING_RE.finditer(raw):
        try:
            data, _ = _decoder.raw_decode(raw, match.start())
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict) or any(isinstance(item, dict) for item in data):
            return data
    raise error


def parse_recommendations(text: str, *, count: int = DEFAULT_COUNT) -> list[University]:
    """Parse the model's JSON reply; malformed output yields an empty list."""
    try:
        data = _load_payload(text or "")
    except json.JSONDecodeError as exc:
        logger.warning("recommender.invalid_json: %s", exc)
        return []
    if isinstance(data, dict):
        data = data.get("universities")
    if not isinstance(data, list):
        logger.warning("recommender.unexpected_payload: %s", type(data).__name__)
        return []

    result: list[University] = []
    for item in data:
        if not isinstance(item, dict):
            continue
        name = _clean_str(item.get("name"))
        if not name:
            continue
        programs = item.get("programs") or []
        if isinstance(programs, str):
            programs = [programs]
        category = _clean_str(item.get("category"))
        result.append(
            University(
                name=name,
                country=_clean_str(item.get("country")),
                city=_clean_str(item.get("city")),
                programs=[str(p).strip() for p in programs if str(p).strip()],
                tuition=_clean_str(item.get("tuition")),
                acceptance_rate=_clean_str(item.get("acceptance_rate")),
                category=category.lower() if category else None,
                match_score=_clamp_score(item.get("match_score")),
                reason=_clean_str(item.get("reason")),
            )
        )
        if len(result) >= count:
            break
    return result


def recommend_universities(
    preferences: dict[str, Any],
    *,
    notes: str | None = None,
    count: int = DEFAULT_COUNT,
    generate: Callable[..., str] | None = None,
) -> list[University]:
    count = max(1, min(count, MAX_COUNT))
    generate = generate or gemini.generate_content
    reply = generate(
        build_recommendation_prompt(preferences, notes=notes, count=count),
        response_mime_type="application/json",
    )
    return parse_recommendations(reply, count=count)


def save_university(
    db: Session, *, user_id: str, name: str, data: dict[str, Any]
) -> SavedUniversity:
    record = (
        db.query(SavedUniversity)
        .filter(SavedUniversity.user_id == user_id, SavedUniversity.university_name == name)
        .one_or_none()
    )
    if record is None:
        record = SavedUniversity(user_id=user_id, university_name=name, university_data=data)
        db.add(record)
    else:
        record.university_data = data
    db.commit()
    db.refresh(record)
    return record


def list_saved_universities(db: Session, *, user_id: str) -> list[SavedUniversity]:
    return (
        db.query(SavedUniversity)
        .filter(SavedUniversity.user_id == user_id)
        .order_by(SavedUniversity.created_at.desc())
        .all()
    )


def delete_saved_university(db: Session, *, user_id: str, saved_id: str) -> bool:
    record = (
        db.query(SavedUniversity)
        .filter(SavedUniversity.id == saved_id, SavedUniversity.user_id == user_id)
        .one_or_none()
    )
    if record is None:
        return False
    db.delete(record)
    db.commit()
    return True


__all__ = [
    "University",
    "build_recommendation_prompt",
    "delete_saved_university",
    "list_saved_universities",
    "parse_recommendations",
    "recommend_universities",
    "save_university",
]
