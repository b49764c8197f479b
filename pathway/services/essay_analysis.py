"""Essay review: prompt construction and parsing of the model's reply.

The model is asked to answer in three delimited sections. The reply is
only informally constrained, so parsing is best effort: highlights are
matched literally against the essay, and anything unparseable degrades to
defaults instead of raising.
"""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Callable

from pathway.metrics import essay_parse_fallback_total
from pathway.services import gemini

logger = logging.getLogger(__name__)

HIGHLIGHTS_MARKER = "---HIGHLIGHTED_PARTS---"
FEEDBACK_MARKER = "---OVERALL_FEEDBACK---"
RATINGS_MARKER = "---RATINGS---"

MIN_HIGHLIGHT_LENGTH = 3
FALLBACK_HIGHLIGHT_LIMIT = 5
FALLBACK_COMMENT = "Consider revising this section for clarity and impact."
DEFAULT_OVERALL = 85

# name, default score, description
CATEGORIES: tuple[tuple[str, int, str], ...] = (
    ("Uniqueness", 87, "How original and distinctive your essay is compared to others."),
    ("Hook", 87, "How effectively your introduction captures the reader's attention."),
    ("Voice", 92, "How well your personal tone and style come through in your writing."),
    ("Flow", 82, "How smoothly your essay transitions between ideas and paragraphs."),
    ("Authenticity", 92, "How genuine and true to yourself your essay feels."),
    ("Conciseness", 82, "How efficiently you express your ideas without unnecessary words."),
)

_SENTENCE_RE = re.compile(r"[^.!?]+[.!?]+")


@dataclass
class EssaySegment:
    text: str
    highlighted: bool = False
    comment: str | None = None


@dataclass
class RatingCategory:
    name: str
    score: int
    description: str


@dataclass
class EssayRatings:
    overall: int
    categories: list[RatingCategory]


@dataclass
class EssayAnalysisResult:
    highlighted_essay: list[EssaySegment] = field(default_factory=list)
    feedback: str = ""
    ratings: EssayRatings | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def default_ratings() -> EssayRatings:
    return EssayRatings(
        overall=DEFAULT_OVERALL,
        categories=[RatingCategory(name, score, desc) for name, score, desc in CATEGORIES],
    )


def build_essay_prompt(essay_type: str, prompt: str, essay: str) -> str:
    return f"""
You are an experienced college admissions officer with 15+ years of experience at top universities. You are evaluating the following {essay_type}.

ESSAY PROMPT: "{prompt}"

ESSAY: "{essay}"

Analyze this essay as if you were making an actual admissions decision. Your response MUST follow this exact format with NO DEVIATIONS:

{HIGHLIGHTS_MARKER}
[exact text that needs improvement]||[your specific comment about this text and how it could be improved to strengthen the application]
[next text part]||[your specific comment]
...add more highlighted parts as needed

{FEEDBACK_MARKER}
[Write a comprehensive evaluation in paragraph form, approximately 500 words. Begin with a one-sentence overall assessment, then cover first impression, personal growth, character and values, writing quality, authenticity, impact and fit for higher education in flowing paragraphs. End with 3-4 specific, actionable recommendations for improvement.]

{RATINGS_MARKER}
Overall: [score from 1-100, based on actual admissions standards]
Uniqueness: [score 1-100]
Hook: [score 1-100]
Voice: [score 1-100]
Flow: [score 1-100]
Authenticity: [score 1-100]
Conciseness: [score 1-100]

CRITICAL INSTRUCTIONS:
1. Each highlighted text MUST be an EXACT match to text in the original essay
2. For each highlight, explain both the impact on the application and how to improve
3. Write the feedback in flowing paragraphs, not numbered sections
4. Rate based on actual admission standards, not general writing quality
""".strip()


def _section(text: str, start: str, end: str | None) -> str:
    idx = text.find(start)
    if idx < 0:
        return ""
    body = text[idx + len(start):]
    if end is not None:
        stop = body.find(end)
        if stop >= 0:
            body = body[:stop]
    return body.strip()


def parse_highlights(section: str) -> list[tuple[str, str]]:
    pairs: list[tuple[str, str]] = []
    for line in section.splitlines():
        if "||" not in line:
            continue
        text, _, comment = line.partition("||")
        text = text.strip()
        if text:
            pairs.append((text, comment.split("||")[0].strip()))
    return pairs


def fallback_highlights(essay: str) -> list[tuple[str, str]]:
    """Every third sentence of the essay, at most five."""
    sentences = _SENTENCE_RE.findall(essay)
    picked = sentences[::3][:FALLBACK_HIGHLIGHT_LIMIT]
    return [(s.strip(), FALLBACK_COMMENT) for s in picked if s.strip()]


def segment_essay(essay: str, highlights: list[tuple[str, str]]) -> list[EssaySegment]:
    """Split ``essay`` around highlights, first occurrence, left to right.

    Each highlight is searched only in the text after the previous match, so
    a highlight that appears earlier in the essay than its predecessor is
    dropped, and a repeated phrase is consumed once per highlight.
    """
    segments: list[EssaySegment] = []
    remaining = essay
    for text, comment in highlights:
        if len(text) < MIN_HIGHLIGHT_LENGTH:
            continue
        start = remaining.find(text)
        if start < 0:
            logger.debug("highlight not found in essay: %r", text[:60])
            continue
        if start > 0:
            segments.append(EssaySegment(remaining[:start]))
        segments.append(EssaySegment(text, highlighted=True, comment=comment or None))
        remaining = remaining[start + len(text):]
    if remaining or not segments:
        segments.append(EssaySegment(remaining))
    return segments


def _clean_feedback(section: str) -> str:
    return re.sub(r"\n{3,}", "\n\n", section).strip()


def _score(section: str, label: str) -> int | None:
    match = re.search(rf"{label}:\s*(\d+)", section, re.IGNORECASE)
    if not match:
        return None
    value = int(match.group(1))
    return value if 1 <= value <= 100 else None


def parse_ratings(section: str) -> EssayRatings:
    ratings = default_ratings()
    if not section:
        return ratings
    overall = _score(section, "Overall")
    if overall is not None:
        ratings.overall = overall
    for category in ratings.categories:
        score = _score(section, category.name)
        if score is not None:
            category.score = score
    return ratings


def parse_essay_response(text: str, essay: str) -> EssayAnalysisResult:
    """Turn a raw model reply into segments, feedback and ratings. Never raises."""
    try:
        highlights_section = _section(text, HIGHLIGHTS_MARKER, FEEDBACK_MARKER)
        feedback_section = _section(text, FEEDBACK_MARKER, RATINGS_MARKER)
        ratings_section = _section(text, RATINGS_MARKER, None)

        highlights = parse_highlights(highlights_section)
        if not highlights:
            essay_parse_fallback_total.inc()
            logger.warning("essay reply had no usable highlights, using sentence fallback")
            highlights = fallback_highlights(essay)

        feedback = _clean_feedback(feedback_section) if feedback_section else text.strip()
        return EssayAnalysisResult(
            highlighted_essay=segment_essay(essay, highlights),
            feedback=feedback,
            ratings=parse_ratings(ratings_section),
        )
    except Exception as exc:
        essay_parse_fallback_total.inc()
        logger.exception("essay reply parsing failed")
        return EssayAnalysisResult(
            feedback=text,
            ratings=default_ratings(),
            error=str(exc) or exc.__class__.__name__,
        )


def request_essay_review(
    essay_type: str,
    prompt: str,
    essay: str,
    *,
    generate: Callable[[str], str] | None = None,
) -> str:
    """Raw model reply; LLM errors propagate."""
    generate = generate or gemini.generate_content
    return generate(build_essay_prompt(essay_type, prompt, essay))


def analyze_essay(
    essay_type: str,
    prompt: str,
    essay: str,
    *,
    generate: Callable[[str], str] | None = None,
) -> EssayAnalysisResult:
    """Review ``essay`` with the LLM; failures come back in ``error``."""
    try:
        reply = request_essay_review(essay_type, prompt, essay, generate=generate)
    except (TimeoutError, RuntimeError, ValueError) as exc:
        logger.error("essay analysis request failed: %s", exc)
        return EssayAnalysisResult(
            feedback=f"Error analyzing essay: {exc}",
            ratings=default_ratings(),
            error=str(exc),
        )
    return parse_essay_response(reply, essay)


__all__ = [
    "EssayAnalysisResult",
    "EssayRatings",
    "EssaySegment",
    "RatingCategory",
    "analyze_essay",
    "build_essay_prompt",
    "default_ratings",
    "fallback_highlights",
    "parse_essay_response",
    "parse_highlights",
    "parse_ratings",
    "request_essay_review",
    "segment_essay",
]
