"""Pull cited sources out of statements: URLs, DOIs, author-year references, quoted titles."""

import logging
import re
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

from debate_arena.models import Citation, RoundType, Statement

logger = logging.getLogger(__name__)

_AUTHOR = r"[A-Z][a-z]+(?:\s+et\s+al\.|\s+(?:&|and)\s+[A-Z][a-z]+)?"
_QUOTED = r"[\"“]([^\"“”]+)[\"”]"
_TRAILING_PUNCTUATION = ".,;:"


@dataclass(frozen=True)
class _CitationPattern:
    type: str
    pattern: re.Pattern[str]
    fields: Callable[[re.Match[str]], dict[str, Any]]


def _title_from_url(url: str) -> str:
    parsed = urlparse(url)
    domain = parsed.netloc.removeprefix("www.")
    segments = [p for p in parsed.path.split("/") if p]
    if not segments:
        return domain
    title = re.sub(r"\.[^.]+$", "", segments[-1])
    return re.sub(r"[-_]", " ", title).title() or domain


def _url_fields(match: re.Match[str]) -> dict[str, Any]:
    url = match.group(0).rstrip(_TRAILING_PUNCTUATION)
    return {"text": url, "url": url, "title": _title_from_url(url)}


def _doi_fields(match: re.Match[str]) -> dict[str, Any]:
    doi = match.group(1).rstrip(_TRAILING_PUNCTUATION)
    return {"text": match.group(0).rstrip(_TRAILING_PUNCTUATION), "url": f"https://doi.org/{doi}"}


# Most specific first; a later pattern never claims text an earlier one matched
_PATTERNS: tuple[_CitationPattern, ...] = (
    _CitationPattern(
        "url",
        re.compile(r"https?://(?:www\.)?[-\w@:%.+~#=]{1,256}\.[a-zA-Z0-9()]{1,6}\b[-\w()@:%+.~#?&/=]*"),
        _url_fields,
    ),
    _CitationPattern("academic", re.compile(r"\bdoi:\s*(10\.\d{4,}/\S+)", re.IGNORECASE), _doi_fields),
    _CitationPattern(
        "academic",
        re.compile(rf"({_AUTHOR})\s*\((\d{{4}})\)\.\s*{_QUOTED}(?:\.\s*([^.]+))?"),
        lambda m: {
            "text": m.group(0).strip(),
            "author": m.group(1),
            "year": int(m.group(2)),
            "title": m.group(3),
            "source": m.group(4).strip() if m.group(4) else None,
        },
    ),
    _CitationPattern(
        "book",
        re.compile(rf"{_QUOTED}(?:\s+by\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*))?\s*\((\d{{4}})\)"),
        lambda m: {"text": m.group(0), "title": m.group(1), "author": m.group(2), "year": int(m.group(3))},
    ),
    _CitationPattern(
        "article",
        re.compile(rf"{_QUOTED},\s*([^,]+),\s*(\d{{4}})"),
        lambda m: {"text": m.group(0), "title": m.group(1), "source": m.group(2).strip(), "year": int(m.group(3))},
    ),
    _CitationPattern(
        "academic",
        re.compile(rf"({_AUTHOR})\s*\((\d{{4}})\)"),
        lambda m: {"text": m.group(0), "author": m.group(1), "year": int(m.group(2))},
    ),
)


def extract_citations(statement: Statement, round_type: RoundType) -> list[Citation]:
    """Return the sources cited in a statement, each reported once."""
    text = statement.content
    citations: list[Citation] = []
    seen: set[str] = set()
    claimed: list[tuple[int, int]] = []

    for spec in _PATTERNS:
        for match in spec.pattern.finditer(text):
            start, end = match.span()
            fields = spec.fields(match)
            found = fields.pop("text")
            if found in seen or any(start < e and end > s for s, e in claimed):
                continue
            seen.add(found)
            claimed.append((start, end))
            citations.append(Citation(
                id=str(uuid.uuid4()),
                text=found,
                type=spec.type,
                model=statement.model,
                position=statement.position,
                round_type=round_type,
                **fields,
            ))

    if citations:
        logger.debug(
            "Found %d citation(s) in %s %s statement", len(citations), statement.position.value, round_type.value
        )
    return citations
