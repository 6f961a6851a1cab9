"""Turn a contributor's free-text description of a document into structure.

The parser is a tuple of independent signal extractors. Each one looks at
the text on its own and returns a partial update; :func:`parse_description`
folds the partials into a :class:`StructureDelta`. A signal that is not
found is simply absent from the partial, so merging never overwrites a
known field with nothing.

Every description, parsed or not, is kept in ``raw_input_history``.
"""
from __future__ import annotations

import re
from collections.abc import Callable
from typing import Any

from .config import CONFIG
from .logging import get_logger
from .models import (
    Column,
    ColumnDataType,
    ContentStructure,
    HandwritingType,
    HumanReading,
    LayoutType,
    Question,
    ScanQuality,
    StructureDelta,
)

logger = get_logger("contribution_pipeline.description")

Partial = dict[str, Any]
Extractor = Callable[[str, str], Partial]

ORDINAL_WORDS = {
    "first": 1,
    "second": 2,
    "third": 3,
    "fourth": 4,
    "fifth": 5,
    "sixth": 6,
    "seventh": 7,
    "eighth": 8,
    "ninth": 9,
    "tenth": 10,
    "one": 1,
    "two": 2,
    "three": 3,
    "four": 4,
    "five": 5,
    "six": 6,
    "seven": 7,
    "eight": 8,
    "nine": 9,
    "ten": 10,
}

_ORD = r"(?:first|second|third|fourth|fifth|sixth|seventh|eighth|ninth|tenth|\d{1,2}(?:st|nd|rd|th))"
_NUM = r"(?:\d{1,2}|one|two|three|four|five|six|seven|eight|nine|ten)"
_VERB = r"(?:\s+(?:is|was|are|has|have|contains|shows|holds|lists|gives|records)\b)?\s*[:=\-]?\s*"
_END = rf"(?=\s*(?:[,;.\n]|\band\s+(?:the\s+)?(?:{_ORD}|column)\b|$))"

_ORDINAL_COLUMN_PATTERNS = (
    re.compile(rf"\b(?:the\s+)?(?P<pos>{_ORD})\s+column{_VERB}(?P<desc>.+?){_END}", re.IGNORECASE),
    re.compile(rf"\bcolumn\s+(?:number\s+)?(?P<pos>{_NUM}){_VERB}(?P<desc>.+?){_END}", re.IGNORECASE),
    re.compile(
        rf"\bthe\s+(?P<pos>{_ORD})\s+(?:one\s+)?(?:is|was|has|contains|shows|holds)\s+(?P<desc>.+?){_END}",
        re.IGNORECASE,
    ),
)

# Keys of structured answers ("layout_type: table") are stripped before keyword scans
_ANSWER_KEY = re.compile(r"\b[a-z]+(?:_[a-z0-9]+)+:")
_LAYOUT_ANSWER = re.compile(r"layout_type:\s*(prose|table|list|form|image_only|mixed)", re.IGNORECASE)
_QUALITY_ANSWER = re.compile(r"scan_quality:\s*(excellent|good|fair|poor)", re.IGNORECASE)
_HANDWRITING_ANSWER = re.compile(r"handwriting_type:\s*(printed|cursive|print_hand|mixed)", re.IGNORECASE)
_COLUMN_TYPE_ANSWER = re.compile(r"column_(\d{1,2})_type:\s*([a-z_]+)", re.IGNORECASE)
_COLUMN_HEADER_ANSWER = re.compile(r"column_(\d{1,2})_header:\s*([^.;\n]+)", re.IGNORECASE)
_COLUMN_COUNT_ANSWER = re.compile(r"column_count:\s*(\d{1,2})", re.IGNORECASE)

_NEGATIVE_TABLE = re.compile(r"\b(?:not?\s+(?:a\s+)?table|no\s+table|isn't\s+(?:a\s+)?table|aren't\s+tables)")
_QUOTED = re.compile(r'"([^"]+)"')
_HEADER_LIST = re.compile(
    r"(?:\bfrom left to right[:,]?|\b(?:columns?|headings?|headers?)\s+are:?|\b(?:columns?|headings?|headers?)\s*:)\s*([^#\n]+)",
    re.IGNORECASE,
)
_SUBCOLUMNS = re.compile(r"\(sub\s*columns?\s+([^)]+)\)", re.IGNORECASE)
_DIMENSIONS = re.compile(r"(\d+(?:\.\d+)?)\s*[×x]\s*(\d+(?:\.\d+)?)\s*(inches|inch|in|cm|mm|pixels|pixel|px)?", re.IGNORECASE)
_PRINTER = re.compile(r"(?:printer|publisher|printed by|published by)[:\s]+([^.;\n]+)", re.IGNORECASE)
_PRINTER_INLINE = re.compile(
    r"([A-Z][a-z]+(?:\s*&\s*[A-Z][a-z]+)?(?:\s+(?:Printers?|Publishers?|Stationers?|Co\.?))+[^.]*)"
)
_LEGIBILITY = re.compile(
    r"(?:only|except|but)\s+(?:the\s+)?([^.]+?)(?:gets?\s+)?(?:blurry|faded|illegible|hard to read)",
    re.IGNORECASE,
)
_COLUMN_COUNT = re.compile(r"(\d+(?:\.\d+)?)\s*columns?\b")
_MARKER = re.compile(r"#([A-Z]+)#\s*([^#]+?)(?=#[A-Z]+#|$)", re.IGNORECASE)
_YEAR = re.compile(r"\b(18\d{2})\b")
_LONG_DATE = re.compile(
    r"\b(?:january|february|march|april|may|june|july|august|september|october|november|december)"
    r"\s+\d{1,2},?\s*\d{4}",
    re.IGNORECASE,
)
_HEADER_QUOTED = re.compile(r"\"([^\"]+)\"|'([^']+)'")
_HEADER_CAPS = re.compile(r"\b([A-Z]{2,}(?:\s+[A-Z]{2,})*)\b")

MILITARY_KEYWORDS = ("military", "regiment", "enlisted", "u.s. service", "compensation", "servitude")

KEYWORD_MAP: dict[str, tuple[str, ...]] = {
    "owner": ("owner", "slaveholder", "master", "former ownership"),
    "enslaved": ("slave", "enslaved", "servant", "negro", "colored"),
    "date": ("date", "day", "month", "year", "when"),
    "age": ("age", "years old"),
    "name": ("name",),
    "location": ("location", "county", "place", "residence", "address"),
    "gender": ("sex", "gender", "male", "female"),
    "physical": ("physical", "condition", "description", "complexion", "height"),
    "military": ("military", "regiment", "enlisted", "service"),
    "compensation": ("compensation", "payment", "received", "amount"),
    "witness": ("witness", "proven", "attested", "sworn"),
}

# (data type, word-prefix keywords, whole-text matches); first hit wins
DATA_TYPE_RULES: tuple[tuple[ColumnDataType, tuple[str, ...], tuple[str, ...]], ...] = (
    (ColumnDataType.OWNER_NAME, ("owner", "slaveholder", "slave owner", "master"), ()),
    (ColumnDataType.ENSLAVED_NAME, ("slave", "enslaved"), ()),
    (ColumnDataType.DATE, ("date", "when"), ("day", "month", "year")),
    (ColumnDataType.AGE, ("age", "old"), ()),
    (ColumnDataType.GENDER, ("gender",), ("sex", "sex.")),
    (ColumnDataType.PHYSICAL_CONDITION, ("physical", "condition", "complexion", "description"), ()),
    (ColumnDataType.TERM_OF_SERVICE, ("term", "servitude", "service"), ()),
    (ColumnDataType.MILITARY, ("regiment", "military", "enlisted", "u.s. service"), ()),
    (ColumnDataType.COMPENSATION, ("compensation", "payment", "received"), ()),
    (ColumnDataType.WITNESS, ("witness", "proven", "by whom"), ()),
    (ColumnDataType.NAME, ("name",), ()),
    (ColumnDataType.LOCATION, ("location", "county", "place"), ()),
    (ColumnDataType.REMARKS, ("remark", "note", "comment"), ()),
)


def _has_word(text: str, term: str) -> bool:
    return re.search(rf"\b{re.escape(term)}", text) is not None


def infer_data_type(description: str) -> ColumnDataType:
    lower = description.lower().strip()
    for data_type, prefixes, exact in DATA_TYPE_RULES:
        if lower in exact:
            return data_type
        if any(_has_word(lower, p) for p in prefixes):
            return data_type
    return ColumnDataType.UNKNOWN


def extract_header_guess(description: str) -> str | None:
    quoted = _HEADER_QUOTED.search(description)
    if quoted:
        return quoted.group(1) or quoted.group(2)
    caps = _HEADER_CAPS.search(description)
    if caps:
        return caps.group(1)
    return None


def ordinal_position(token: str) -> int | None:
    token = token.lower().strip()
    if token in ORDINAL_WORDS:
        return ORDINAL_WORDS[token]
    digits = re.match(r"\d+", token)
    if digits:
        value = int(digits.group(0))
        return value if value >= 1 else None
    return None


def _column_from(position: int, text: str) -> Column:
    description = re.sub(r"^(?:the|a|an)\s+", "", text.strip(), flags=re.IGNORECASE)
    return Column(
        position=position,
        description=description,
        data_type=infer_data_type(description),
        header_guess=extract_header_guess(description),
    )


# =============================================================================
# Signal extractors
# =============================================================================


def _layout(text: str, lower: str) -> Partial:
    answer = _LAYOUT_ANSWER.search(text)
    if answer:
        return {"layout_type": LayoutType(answer.group(1).lower())}
    if _NEGATIVE_TABLE.search(lower):
        return {"layout_type": LayoutType.PROSE}
    if "narrative" in lower or "prose" in lower:
        return {"layout_type": LayoutType.PROSE}
    if "paragraph" in lower and "table" not in lower:
        return {"layout_type": LayoutType.PROSE}
    if "table" in lower or "column" in lower or "row" in lower:
        return {"layout_type": LayoutType.TABLE}
    if "list" in lower:
        return {"layout_type": LayoutType.LIST}
    if "text" in lower:
        return {"layout_type": LayoutType.PROSE}
    return {}


def _ordinal_columns(text: str) -> list[Column]:
    found: dict[int, Column] = {}
    for pattern in _ORDINAL_COLUMN_PATTERNS:
        for match in pattern.finditer(text):
            position = ordinal_position(match.group("pos"))
            description = match.group("desc").strip()
            if position is None or not description:
                continue
            found[position] = _column_from(position, description)
    return [found[p] for p in sorted(found)]


def _listed_headers(text: str) -> list[str]:
    quoted = [h.strip() for h in _QUOTED.findall(text) if h.strip()]
    if quoted:
        return quoted
    match = _HEADER_LIST.search(text)
    if not match:
        return []
    headers = [h.strip().rstrip(".").strip() for h in re.split(r"[,;]", match.group(1))]
    return [h for h in headers if 0 < len(h) < 100]


def _columns(text: str, lower: str) -> Partial:
    """Ordinal phrases first, then quoted headers, then a header list."""
    columns = _ordinal_columns(text)
    if not columns:
        columns = [
            Column(position=i, description=h, data_type=infer_data_type(h), header_guess=h)
            for i, h in enumerate(_listed_headers(text), start=1)
        ]
    return {"columns": columns} if columns else {}


def _answered_columns(text: str, lower: str) -> Partial:
    columns: dict[int, Column] = {}
    count = _COLUMN_COUNT_ANSWER.search(text)
    partial: Partial = {}
    if count:
        n = int(count.group(1))
        partial["visible_area"] = {"columns_visible": n}
        for position in range(1, n + 1):
            columns[position] = Column(position=position)
    for match in _COLUMN_TYPE_ANSWER.finditer(text):
        position = int(match.group(1))
        if position < 1:
            continue
        value = match.group(2).lower()
        try:
            data_type = ColumnDataType(value)
        except ValueError:
            data_type = infer_data_type(value.replace("_", " "))
        column = columns.get(position) or Column(position=position)
        column.data_type = data_type
        columns[position] = column
    for match in _COLUMN_HEADER_ANSWER.finditer(text):
        position = int(match.group(1))
        if position < 1:
            continue
        header = match.group(2).strip()
        column = columns.get(position) or Column(position=position)
        column.header_guess = header
        if column.data_type == ColumnDataType.UNKNOWN:
            column.data_type = infer_data_type(header)
        columns[position] = column
    if columns:
        partial["answered_columns"] = [columns[p] for p in sorted(columns)]
    return partial


def _human_readings(text: str, lower: str) -> Partial:
    readings: list[HumanReading] = []
    quoted = [h.strip() for h in _QUOTED.findall(text) if h.strip()]
    if quoted:
        readings.append(HumanReading(reading_type="column_headers", exact_text=quoted))
    else:
        listed = _listed_headers(text)
        if listed:
            readings.append(HumanReading(reading_type="column_header_sequence", exact_text=listed))
    inline = _PRINTER_INLINE.search(text)
    if inline:
        readings.append(
            HumanReading(reading_type="printer_text", exact_text=inline.group(1).strip(), note="Fine print detected")
        )
    return {"human_readings": readings} if readings else {}


def _quality(text: str, lower: str) -> Partial:
    answer = _QUALITY_ANSWER.search(text)
    if answer:
        return {"scan_quality": ScanQuality(answer.group(1).lower())}
    quality: ScanQuality | None = None
    if "faded" in lower or "hard to read" in lower:
        quality = ScanQuality.FAIR
    if "illegible" in lower or "can't read" in lower or "cannot read" in lower:
        quality = ScanQuality.POOR
    if "clear" in lower or "readable" in lower:
        quality = ScanQuality.GOOD
    if "excellent" in lower or "very clear" in lower:
        quality = ScanQuality.EXCELLENT
    partial: Partial = {"scan_quality": quality} if quality else {}

    legibility = _LEGIBILITY.search(text)
    if legibility:
        partial["auxiliary_data"] = {
            "legibility_notes": [
                {
                    "issue": "partial_illegibility",
                    "description": legibility.group(1).strip(),
                    "full_context": legibility.group(0),
                }
            ]
        }
    return partial


def _handwriting(text: str, lower: str) -> Partial:
    answer = _HANDWRITING_ANSWER.search(text)
    if answer:
        return {"handwriting_type": HandwritingType(answer.group(1).lower())}
    kind: HandwritingType | None = None
    handwritten = "handwritten" in lower or "cursive" in lower
    printed = "printed" in lower or "typed" in lower or "typewritten" in lower
    if handwritten:
        kind = HandwritingType.CURSIVE
    if printed:
        kind = HandwritingType.PRINTED
    entries = "entries" in lower or "data" in lower
    headers = "titles" in lower or "headers" in lower or "headings" in lower
    if entries and handwritten and headers and printed:
        return {
            "handwriting_type": HandwritingType.MIXED,
            "auxiliary_data": {"handwriting_details": {"entries": "handwritten", "headers": "printed"}},
        }
    return {"handwriting_type": kind} if kind else {}


def _partial_view(text: str, lower: str) -> Partial:
    partial: Partial = {}
    count = _COLUMN_COUNT.search(lower)
    if count:
        value = float(count.group(1))
        partial["visible_area"] = {"columns_visible": int(value) if value.is_integer() else value}
    if "partial" in lower or "can only see" in lower or "sliver" in lower:
        partial["has_partial_view"] = True
    return partial


def _physical(text: str, lower: str) -> Partial:
    physical: dict[str, Any] = {}
    if "open book" in lower or "two pages" in lower or "spread" in lower:
        physical["layout"] = "book_spread"
        physical["pages_visible"] = 2
    if "spine" in lower:
        physical["has_spine"] = True
    if "spreads across" in lower or "spans both" in lower:
        physical["content_spans_both_pages"] = True
    dims = _DIMENSIONS.search(text)
    if dims:
        physical["dimensions"] = {
            "width": float(dims.group(1)),
            "height": float(dims.group(2)),
            "unit": dims.group(3) or "unknown",
        }
    return {"physical_description": physical} if physical else {}


def _auxiliary(text: str, lower: str) -> Partial:
    aux: dict[str, Any] = {}

    printer = _PRINTER.search(text)
    inline = _PRINTER_INLINE.search(text)
    if printer:
        aux["printer"] = printer.group(1).strip()
    elif inline:
        aux["printer"] = inline.group(1).strip()

    for match in _SUBCOLUMNS.finditer(text):
        context = text[max(0, match.start() - 100) : match.start()].strip()
        names = [s.strip() for s in re.split(r"[.,]", match.group(1)) if s.strip()]
        aux.setdefault("subcolumns", []).append({"parent_context": context, "subcolumn_names": names})

    military = [kw for kw in MILITARY_KEYWORDS if kw in lower]
    if military:
        aux["military_context"] = {"detected": True, "keywords": military}
        if "compensation" in lower and "military" in lower:
            aux["document_subtype"] = "civil_war_compensation_record"

    dates = _YEAR.findall(text) + [m.group(0) for m in _LONG_DATE.finditer(text)]
    if dates:
        aux["dates_found"] = dates

    markers = {m.group(1).lower(): m.group(2).strip() for m in _MARKER.finditer(text)}
    if markers:
        aux["user_markers"] = markers

    return {"auxiliary_data": aux} if aux else {}


def _keywords(text: str, lower: str) -> Partial:
    found = [
        category
        for category, terms in KEYWORD_MAP.items()
        if any(_has_word(lower, term) for term in terms)
    ]
    return {"keywords": found} if found else {}


SIGNAL_EXTRACTORS: tuple[Extractor, ...] = (
    _layout,
    _columns,
    _answered_columns,
    _human_readings,
    _quality,
    _handwriting,
    _partial_view,
    _physical,
    _auxiliary,
    _keywords,
)


# =============================================================================
# Parsing and merging
# =============================================================================


def deep_merge(target: dict[str, Any], source: dict[str, Any]) -> dict[str, Any]:
    """Merge ``source`` into a copy of ``target``; lists concatenate."""
    result = dict(target)
    for key, value in source.items():
        if isinstance(value, list):
            result[key] = list(target.get(key) or []) + value
        elif isinstance(value, dict):
            result[key] = deep_merge(target.get(key) or {}, value)
        else:
            result[key] = value
    return result


def _merge_columns(existing: list[Column], incoming: list[Column]) -> list[Column]:
    by_position = {c.position: c.model_copy() for c in existing}
    for column in incoming:
        current = by_position.get(column.position)
        if current is None:
            by_position[column.position] = column.model_copy()
            continue
        # A bare placeholder (no description, no type) never clobbers what is known
        if column.description or column.data_type != ColumnDataType.UNKNOWN:
            current.data_type = column.data_type
        if column.description:
            current.description = column.description
        if column.header_guess:
            current.header_guess = column.header_guess
    return [by_position[p] for p in sorted(by_position)]


def parse_description(text: str) -> StructureDelta:
    """Parse free text into a partial structure update. Never raises."""
    text = text if isinstance(text, str) else ""
    lower = _ANSWER_KEY.sub(" ", text.lower())

    combined: Partial = {}
    for extractor in SIGNAL_EXTRACTORS:
        try:
            partial = extractor(text, lower)
        except Exception as exc:
            logger.warning("description.extractor_failed", extractor=extractor.__name__, error=str(exc))
            continue
        for key, value in partial.items():
            if isinstance(value, dict):
                combined[key] = deep_merge(combined.get(key, {}), value)
            elif isinstance(value, list) and key in combined:
                combined[key] = combined[key] + value
            else:
                combined[key] = value

    columns = combined.pop("columns", [])
    answered = combined.pop("answered_columns", [])
    if answered:
        columns = _merge_columns(columns, answered)
    return StructureDelta(raw_input=text, columns=columns, **combined)


def merge_structure(structure: ContentStructure, delta: StructureDelta) -> ContentStructure:
    """Fold ``delta`` into ``structure`` in place and return it.

    Known fields are only overwritten by values the delta actually found.
    """
    if delta.columns:
        structure.columns = _merge_columns(structure.columns, delta.columns)
    if delta.layout_type is not None:
        structure.layout_type = delta.layout_type
    if delta.scan_quality is not None:
        structure.scan_quality = delta.scan_quality
    if delta.handwriting_type is not None:
        structure.handwriting_type = delta.handwriting_type
    if delta.has_partial_view is not None:
        structure.has_partial_view = delta.has_partial_view
    if delta.visible_area:
        structure.visible_area = deep_merge(structure.visible_area, delta.visible_area)
    if delta.physical_description:
        structure.physical_description = deep_merge(structure.physical_description, delta.physical_description)
    if delta.auxiliary_data:
        structure.auxiliary_data = deep_merge(structure.auxiliary_data, delta.auxiliary_data)
    if delta.human_readings:
        structure.human_readings = structure.human_readings + list(delta.human_readings)
    for keyword in delta.keywords:
        if keyword not in structure.keywords:
            structure.keywords.append(keyword)
    structure.touch_raw_input(delta.raw_input, delta)
    return structure


# =============================================================================
# Follow-up questions and replies
# =============================================================================

COLUMN_TYPE_OPTIONS = [
    ("owner_name", "Slaveholder/Owner names"),
    ("enslaved_name", "Enslaved person names"),
    ("date", "Dates"),
    ("age", "Ages"),
    ("gender", "Gender/Sex"),
    ("location", "Locations"),
    ("physical_condition", "Physical condition"),
    ("military", "Military/Regiment info"),
    ("compensation", "Compensation amounts"),
    ("remarks", "Remarks/Notes"),
    ("other", "Something else (can ignore)"),
]


def follow_up_questions(structure: ContentStructure, max_unknown: int | None = None) -> list[Question]:
    """Questions still worth asking, most important first. Empty means done."""
    limit = CONFIG.max_unknown_column_questions if max_unknown is None else max_unknown
    questions: list[Question] = []

    if structure.is_tabular and not structure.columns:
        questions.append(
            Question(
                id="column_count",
                question="How many columns can you see (fully or partially)?",
                type="number",
            )
        )

    unknown = [c for c in structure.columns if c.data_type == ColumnDataType.UNKNOWN][:limit]
    for column in unknown:
        hint = f' ("{column.header_guess}")' if column.header_guess else ""
        questions.append(
            Question.choice(
                f"column_{column.position}_type",
                f"What does column {column.position}{hint} contain?",
                COLUMN_TYPE_OPTIONS,
                required=False,
            )
        )

    if structure.scan_quality is None:
        questions.append(
            Question.choice(
                "scan_quality",
                "Overall, how legible is the document?",
                [
                    ("excellent", "Excellent - very clear"),
                    ("good", "Good - mostly readable"),
                    ("fair", "Fair - some parts hard to read"),
                    ("poor", "Poor - significant portions illegible"),
                ],
            )
        )
    return questions


def describe_reply(delta: StructureDelta, questions: list[Question]) -> str:
    parts: list[str] = []
    if delta.layout_type == LayoutType.PROSE:
        parts.append(
            "Got it - this is a **narrative/prose** document (not tabular).\n\n"
            "I'll use entity extraction to identify:\n"
            "- Slaveholder names\n- Enslaved persons\n- Dates and transactions\n- Relationships and context\n"
        )
    elif delta.layout_type is not None:
        parts.append(f"Got it - this is a **{delta.layout_type.value}** format document.\n")

    if delta.columns:
        rows = ["I understood these columns:", "| Position | Type | Header |", "|----------|------|--------|"]
        rows += [f"| {c.position} | {c.data_type.value} | {c.header_guess or '?'} |" for c in delta.columns]
        parts.append("\n".join(rows) + "\n")

    if delta.scan_quality is not None:
        parts.append(f"Quality assessment: **{delta.scan_quality.value}**")
    if delta.has_partial_view:
        parts.append("I noticed you mentioned a partial view - I'll account for that in extraction.")

    if questions:
        parts.append("I have a few more questions to make sure I understand correctly:")
    else:
        parts.append("I think I have enough information to proceed. Let me confirm the structure with you.")
    return "\n".join(parts)


def answers_to_text(answers: dict[str, Any]) -> str:
    """Fold structured answers into text the parser understands."""
    return " ".join(f"{key}: {value}." for key, value in answers.items() if value not in (None, ""))
