"""Extraction guidance: difficulty scoring and method recommendation.

The mapping is a fixed lookup, not a weighted model:

    scan quality     poor 3, fair 2, good 1, excellent/unknown 0
    handwriting      cursive 2, mixed 1, otherwise 0
    partial view     1

    score >= 5 -> high    -> guided_entry
    score >= 3 -> medium  -> auto_ocr_with_review
    otherwise  -> low     -> html_extraction for HTML pages, else auto_ocr
"""
from __future__ import annotations

from .models import (
    ColumnDataType,
    ContentStructure,
    ContentType,
    Difficulty,
    ExtractionGuidance,
    ExtractionMethod,
    ExtractionOption,
    HandwritingType,
    RecommendedMethod,
    ScanQuality,
    SourceAnalysis,
)

QUALITY_POINTS = {
    ScanQuality.POOR: 3,
    ScanQuality.FAIR: 2,
    ScanQuality.GOOD: 1,
    ScanQuality.EXCELLENT: 0,
}

HANDWRITING_POINTS = {
    HandwritingType.CURSIVE: 2,
    HandwritingType.MIXED: 1,
}

HIGH_THRESHOLD = 5
MEDIUM_THRESHOLD = 3

PROTECTED_DOMAINS = ("msa.maryland.gov", "ancestry.com")


def difficulty_score(structure: ContentStructure) -> int:
    score = QUALITY_POINTS.get(structure.scan_quality, 0)
    score += HANDWRITING_POINTS.get(structure.handwriting_type, 0)
    if structure.has_partial_view:
        score += 1
    return score


def difficulty_for(score: int) -> Difficulty:
    if score >= HIGH_THRESHOLD:
        return Difficulty.HIGH
    if score >= MEDIUM_THRESHOLD:
        return Difficulty.MEDIUM
    return Difficulty.LOW


def recommend_method(difficulty: Difficulty, analysis: SourceAnalysis | None) -> RecommendedMethod:
    if difficulty == Difficulty.HIGH:
        return RecommendedMethod.GUIDED_ENTRY
    if difficulty == Difficulty.MEDIUM:
        return RecommendedMethod.AUTO_OCR_WITH_REVIEW
    if analysis is not None and analysis.content_type == ContentType.HTML_PAGE:
        return RecommendedMethod.HTML_EXTRACTION
    return RecommendedMethod.AUTO_OCR


def build_guidance(structure: ContentStructure, analysis: SourceAnalysis | None) -> ExtractionGuidance:
    types = {c.data_type for c in structure.columns}
    owner = structure.first_column_of(ColumnDataType.OWNER_NAME)
    enslaved = structure.first_column_of(ColumnDataType.ENSLAVED_NAME)
    score = difficulty_score(structure)
    difficulty = difficulty_for(score)
    return ExtractionGuidance(
        contains_owners=ColumnDataType.OWNER_NAME in types,
        contains_enslaved=ColumnDataType.ENSLAVED_NAME in types,
        contains_dates=ColumnDataType.DATE in types,
        contains_ages=ColumnDataType.AGE in types,
        contains_locations=ColumnDataType.LOCATION in types,
        owner_column_index=owner.position if owner else None,
        enslaved_column_index=enslaved.position if enslaved else None,
        difficulty_score=score,
        expected_difficulty=difficulty,
        recommended_method=recommend_method(difficulty, analysis),
        column_mapping={str(c.position): c.data_type.value for c in structure.columns},
    )


def is_protected(analysis: SourceAnalysis | None) -> bool:
    domain = (analysis.domain or "") if analysis else ""
    return any(d in domain for d in PROTECTED_DOMAINS)


def extraction_options(guidance: ExtractionGuidance, analysis: SourceAnalysis | None) -> list[ExtractionOption]:
    """All seven extraction methods, flagged as recommended and available."""
    recommended = guidance.recommended_method
    protected = is_protected(analysis)
    wants_ocr = recommended in (RecommendedMethod.AUTO_OCR, RecommendedMethod.AUTO_OCR_WITH_REVIEW)
    return [
        ExtractionOption(
            id=ExtractionMethod.AUTO_OCR.value,
            label="Auto-OCR",
            description="I'll run OCR and show you results to correct",
            best_for="Clear, printed documents from accessible URLs",
            recommended=wants_ocr and not protected,
            available=not protected,
        ),
        ExtractionOption(
            id=ExtractionMethod.BROWSER_BASED_OCR.value,
            label="Browser-Based OCR",
            description="Use browser automation to access protected documents",
            best_for="Websites that block direct downloads (like Maryland Archives)",
            recommended=protected,
        ),
        ExtractionOption(
            id=ExtractionMethod.MANUAL_TEXT.value,
            label="Manual Text Copy",
            description="Copy and paste text from the document yourself",
            best_for="When you can access the document but automation fails",
        ),
        ExtractionOption(
            id=ExtractionMethod.SCREENSHOT_UPLOAD.value,
            label="Screenshot Upload",
            description="Upload screenshots of the document pages",
            best_for="Multi-page documents or complex layouts",
        ),
        ExtractionOption(
            id=ExtractionMethod.GUIDED_ENTRY.value,
            label="Guided Entry",
            description="I'll show you the image, you type what you see row by row",
            best_for="Difficult handwriting, high-value documents",
            recommended=recommended == RecommendedMethod.GUIDED_ENTRY,
        ),
        ExtractionOption(
            id=ExtractionMethod.SAMPLE_LEARN.value,
            label="Sample & Learn",
            description="You give me 5-10 example rows, I learn the pattern and extract the rest",
            best_for="Consistent formatting with quirks",
        ),
        ExtractionOption(
            id=ExtractionMethod.CSV_UPLOAD.value,
            label="CSV Upload",
            description="You transcribe to a spreadsheet, I import it",
            best_for="Already transcribed data",
        ),
    ]


def confirmation_message(structure: ContentStructure, guidance: ExtractionGuidance) -> str:
    layout = structure.layout_type.value if structure.layout_type else "unknown"
    lines = [
        "**Structure Confirmed**",
        "",
        f"**Document Layout:** {layout}",
        f"**Quality:** {structure.scan_quality.value if structure.scan_quality else 'Not assessed'}",
        f"**Handwriting:** {structure.handwriting_type.value if structure.handwriting_type else 'Not specified'}",
        "",
    ]
    if structure.columns:
        lines.append("**Column Mapping:**")
        for column in structure.columns:
            mark = "**" if column.data_type in (ColumnDataType.OWNER_NAME, ColumnDataType.ENSLAVED_NAME) else ""
            header = f" ({column.header_guess})" if column.header_guess else ""
            lines.append(f"  Column {column.position}: {mark}{column.data_type.value}{mark}{header}")
        lines.append("")
    lines += [
        "**Extraction Assessment:**",
        f"  Difficulty: {guidance.expected_difficulty.value} (score {guidance.difficulty_score})",
        f"  Recommended approach: {guidance.recommended_method.value}",
        "",
        "How would you like to proceed?",
    ]
    return "\n".join(lines)
