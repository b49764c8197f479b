from __future__ import annotations

from dataclasses import dataclass, field
from io import BytesIO
from pathlib import Path
from typing import Any

from reportlab.lib.pagesizes import A4
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.pdfgen import canvas

FONT_FAMILY_REGULAR = "DejaVuSans"
FONT_FAMILY_BOLD = "DejaVuSans-Bold"
FALLBACK_REGULAR = "Helvetica"
FALLBACK_BOLD = "Helvetica-Bold"
FONTS_DIR = Path(__file__).resolve().parents[1] / "assets" / "fonts"

_FONTS_REGISTERED = False


def _register_fonts() -> None:
    global _FONTS_REGISTERED
    if _FONTS_REGISTERED:
        return
    regular = FONTS_DIR / "DejaVuSans.ttf"
    bold = FONTS_DIR / "DejaVuSans-Bold.ttf"
    if regular.exists():
        pdfmetrics.registerFont(TTFont(FONT_FAMILY_REGULAR, str(regular)))
    if bold.exists():
        pdfmetrics.registerFont(TTFont(FONT_FAMILY_BOLD, str(bold)))
    _FONTS_REGISTERED = True


def _resolve_font(name: str, fallback: str) -> str:
    try:
        pdfmetrics.getFont(name)
        return name
    except KeyError:
        return fallback


@dataclass
class EssayPdfData:
    essay_type: str
    prompt: str
    feedback: str
    overall_score: int | None = None
    categories: list[tuple[str, int]] = field(default_factory=list)
    highlights: list[tuple[str, str]] = field(default_factory=list)
    created_at: str | None = None


def pdf_data_from_analysis(analysis: Any) -> EssayPdfData:
    """Build render data from an ``EssayAnalysis`` row."""
    ratings = analysis.ratings or {}
    categories = [
        (str(item.get("name")), int(item.get("score", 0)))
        for item in ratings.get("categories") or []
        if isinstance(item, dict) and item.get("name")
    ]
    highlights = [
        (str(seg.get("text", "")).strip(), str(seg.get("comment") or ""))
        for seg in analysis.highlights or []
        if isinstance(seg, dict) and seg.get("highlighted")
    ]
    created = analysis.created_at.strftime("%Y-%m-%d %H:%M") if analysis.created_at else None
    return EssayPdfData(
        essay_type=analysis.essay_type,
        prompt=analysis.prompt,
        feedback=analysis.feedback,
        overall_score=analysis.overall_score,
        categories=categories,
        highlights=highlights,
        created_at=created,
    )


def render_essay_pdf(data: EssayPdfData) -> bytes:
    _register_fonts()
    font_regular = _resolve_font(FONT_FAMILY_REGULAR, FALLBACK_REGULAR)
    font_bold = _resolve_font(FONT_FAMILY_BOLD, FALLBACK_BOLD)

    buffer = BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=A4)
    page_width, page_height = A4
    margin_x = 40
    margin_y = 40
    width = page_width - margin_x * 2
    y = page_height - margin_y

    pdf.setTitle("Essay Analysis Report")
    y = _draw_paragraph(pdf, "Essay Analysis Report", margin_x, y, width, font_bold, 16, 20, page_height, margin_y)
    y -= 6

    summary = [f"Essay type: {data.essay_type}"]
    if data.created_at:
        summary.append(f"Created: {data.created_at}")
    for line in summary:
        y = _draw_paragraph(pdf, line, margin_x, y, width, font_regular, 10, 14, page_height, margin_y)
    y = _draw_paragraph(pdf, "Prompt", margin_x, y - 4, width, font_bold, 11, 15, page_height, margin_y)
    y = _draw_paragraph(pdf, data.prompt, margin_x, y, width, font_regular, 10, 14, page_height, margin_y)
    y -= 8

    if data.overall_score is not None or data.categories:
        y = _draw_paragraph(pdf, "Ratings", margin_x, y, width, font_bold, 12, 16, page_height, margin_y)
        if data.overall_score is not None:
            y = _draw_paragraph(
                pdf, f"Overall Score: {data.overall_score}/100", margin_x, y, width, font_bold, 10, 14, page_height, margin_y
            )
        for name, score in data.categories:
            y = _draw_paragraph(
                pdf, f"{name}: {score}/100", margin_x + 12, y, width - 12, font_regular, 10, 14, page_height, margin_y
            )
        y -= 8

    y = _draw_paragraph(pdf, "Overall Feedback", margin_x, y, width, font_bold, 12, 16, page_height, margin_y)
    for paragraph in data.feedback.split("\n"):
        if not paragraph.strip():
            y -= 6
            continue
        y = _draw_paragraph(pdf, paragraph, margin_x, y, width, font_regular, 10, 14, page_height, margin_y)
    y -= 8

    if data.highlights:
        y = _draw_paragraph(pdf, "Highlighted Passages", margin_x, y, width, font_bold, 12, 16, page_height, margin_y)
        for idx, (text, comment) in enumerate(data.highlights, start=1):
            y = _draw_paragraph(
                pdf, f'{idx}. "{text}"', margin_x, y, width, font_bold, 10, 14, page_height, margin_y
            )
            if comment:
                y = _draw_paragraph(
                    pdf, comment, margin_x + 12, y, width - 12, font_regular, 9, 12, page_height, margin_y
                )
            y -= 4

    pdf.showPage()
    pdf.save()
    return buffer.getvalue()


def _wrap_text(text: str, font_name: str, font_size: int, max_width: float) -> list[str]:
    words = text.split()
    if not words:
        return [""]
    lines = []
    current = ""
    for word in words:
        candidate = f"{current} {word}".strip()
        width = pdfmetrics.stringWidth(candidate, font_name, font_size)
        if width <= max_width or not current:
            current = candidate
        else:
            lines.append(current)
            current = word
    if current:
        lines.append(current)
    return lines


def _draw_paragraph(
    pdf,
    text: str,
    x: float,
    y: float,
    max_width: float,
    font_name: str,
    font_size: int,
    leading: int,
    page_height: float,
    margin_y: float,
) -> float:
    pdf.setFont(font_name, font_size)
    for line in _wrap_text(text, font_name, font_size, max_width):
        if y < margin_y:
            pdf.showPage()
            pdf.setFont(font_name, font_size)
            y = page_height - margin_y
        pdf.drawString(x, y, line)
        y -= leading
    return y
