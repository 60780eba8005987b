"""Metadata synthesis and annotated document rendering.

:func:`synthesize_metadata` derives a :class:`DocumentMetadata` block from
markdown text using pattern heuristics only.  It is a pure function: the same
body always yields the same metadata.

:func:`annotate` wraps a body in a front-matter block and appends the AI
directive blocks::

    ---
    doc-id: "0b6f..."
    title: "Getting Started"
    description: "Install the package and ..."
    created-date: "2025-01-01T12:00:00.000Z"
    updated-date: "2025-01-01T12:00:00.000Z"
    source-url: "https://example.com/start"
    purpose: "tutorial"
    audience: ["developers"]
    tags: ["tutorial", "python"]
    reading-time-minutes: 3
    entities:
      - "pip install"
    ---

    # Getting Started
    ...

Document IDs and timestamps are generated on every call and are never part
of a cached body.
"""

from __future__ import annotations

import json
import math
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

DEFAULT_TITLE: str = "Untitled Document"
DEFAULT_PURPOSE: str = "information"
DEFAULT_AUDIENCE: str = "general"

DESCRIPTION_MAX: int = 150
WORDS_PER_MINUTE: int = 200
MAX_IMAGES: int = 5
MAX_ENTITIES: int = 10

#: Body length (characters) above which the summary directive is appended.
SUMMARY_THRESHOLD: int = 1000
#: Body length (characters) above which the entity directive is also appended.
ENTITY_THRESHOLD: int = 3000

FRONTMATTER_DELIMITER: str = "---"

# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------

_TITLE_RE = re.compile(r"^# (.+)$", re.MULTILINE)
_IMAGE_RE = re.compile(r"!\[[^\]]*?\]\((https?://[^)\s]+)[^)]*\)")
_CODE_SPAN_RE = re.compile(r"`([^`\n]+)`")
_CAPITALIZED_PHRASE_RE = re.compile(r"\b([A-Z][a-z]+(?:[ \t]+[A-Z][a-z]+)+)\b")
_ACRONYM_RE = re.compile(r"\b([A-Z]{2,})\b")
_ROMAN_NUMERALS: frozenset[str] = frozenset({"II", "III", "IV"})


def _any(*patterns: str) -> re.Pattern[str]:
    return re.compile("|".join(f"(?:{p})" for p in patterns), re.IGNORECASE)


#: Evaluated in order; the first match decides the purpose.
PURPOSE_RULES: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("tutorial", _any(r"\bhow\s+to\b", r"\bstep\s+\d+\b", r"\bguide\b", r"\btutorial\b")),
    ("reference", _any(r"\breference\b", r"\bspecification\b", r"\bdocumentation\b")),
    ("opinion", _any(r"\bopinion\b", r"\bthink\b", r"\bbelieve\b", r"\bargue\b")),
    ("analysis", _any(r"\banalysis\b", r"\bresearch\b", r"\bstudy\b")),
)

#: Each group is tested independently.
AUDIENCE_RULES: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("developers", _any(r"\bdevelopers?\b", r"\bcode\b", r"\bprogramm(?:er|ing)\b", r"\bengine(?:er|ering)\b")),
    ("designers", _any(r"\bdesigners?\b", r"\bUX\b", r"\bUI\b", r"\buser\s+experience\b")),
    ("managers", _any(r"\bmanagers?\b", r"\bleaders?\b", r"\bexecutives?\b", r"\bCEO\b", r"\bCTO\b")),
    ("beginners", _any(r"\bbeginners?\b", r"\bnovices?\b", r"\bintroduction\b")),
)

DOMAIN_TAG_RULES: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("web-development", _any(r"\b(?:javascript|typescript|react|angular|vue|node\.?js)\b")),
    ("python", _any(r"\b(?:python|django|flask|pandas|numpy)\b")),
    ("artificial-intelligence", _any(r"\b(?:ai|machine\s+learning|deep\s+learning|neural\s+network|llm|gpt)\b")),
    ("data-science", _any(r"\b(?:data\s+science|statistics|analytics|visualization|big\s+data)\b")),
    ("cloud-computing", _any(r"\b(?:cloud|aws|azure|google\s+cloud|serverless)\b")),
    ("devops", _any(r"\b(?:devops|ci/cd|pipeline|docker|kubernetes|k8s)\b")),
    ("security", _any(r"\b(?:security|encryption|authentication|authorization|oauth)\b")),
)

#: Entities matching one of these (case-insensitively) become tags.
KNOWN_TECHNOLOGIES: frozenset[str] = frozenset(
    {
        "react", "angular", "vue", "node", "python", "java", "javascript", "typescript",
        "kubernetes", "docker", "aws", "azure", "gcp", "ai", "ml",
    }
)

_SUMMARY_PROMPT = (
    "Provide a concise summary of the main points covered in this document. "
    "Focus on the key information, main arguments, and important conclusions."
)
_ENTITY_PROMPT = (
    "Extract the key entities (people, organizations, technologies, concepts) mentioned "
    "in this document and provide a brief explanation of their significance in the "
    "context of this content."
)


# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DocumentMetadata:
    """Content-derived fields of the front-matter block."""

    title: str
    description: str
    purpose: str
    audience: tuple[str, ...]
    tags: tuple[str, ...]
    reading_time_minutes: int
    images: tuple[str, ...]
    entities: tuple[str, ...]


def extract_title(body: str) -> str:
    match = _TITLE_RE.search(body)
    return match.group(1).strip() if match else DEFAULT_TITLE


def extract_description(body: str) -> str:
    """First paragraph that is not a heading, code fence, table row or image."""
    for block in body.split("\n\n"):
        paragraph = block.strip()
        if not paragraph or paragraph.startswith(("#", "```", "|", "!")):
            continue
        flattened = paragraph.replace("\n", " ")
        if len(flattened) > DESCRIPTION_MAX:
            return flattened[:DESCRIPTION_MAX] + "..."
        return flattened
    return ""


def reading_time(body: str) -> int:
    return max(1, math.ceil(len(body.split()) / WORDS_PER_MINUTE))


def extract_images(body: str) -> tuple[str, ...]:
    return tuple(_IMAGE_RE.findall(body)[:MAX_IMAGES])


def extract_entities(body: str) -> tuple[str, ...]:
    """Code spans, then capitalised multi-word phrases, then acronyms; first ten, deduplicated."""
    found: dict[str, None] = {}
    for term in _CODE_SPAN_RE.findall(body):
        term = term.strip()
        if len(term) > 1:
            found.setdefault(term, None)
    for phrase in _CAPITALIZED_PHRASE_RE.findall(body):
        if len(phrase) > 3:
            found.setdefault(phrase, None)
    for acronym in _ACRONYM_RE.findall(body):
        if acronym not in _ROMAN_NUMERALS:
            found.setdefault(acronym, None)
    return tuple(list(found)[:MAX_ENTITIES])


def classify_purpose(body: str) -> str:
    for purpose, pattern in PURPOSE_RULES:
        if pattern.search(body):
            return purpose
    return DEFAULT_PURPOSE


def classify_audience(body: str) -> tuple[str, ...]:
    audience = tuple(label for label, pattern in AUDIENCE_RULES if pattern.search(body))
    return audience or (DEFAULT_AUDIENCE,)


def derive_tags(body: str, purpose: str, entities: tuple[str, ...]) -> tuple[str, ...]:
    tags: dict[str, None] = {purpose: None}
    for tag, pattern in DOMAIN_TAG_RULES:
        if pattern.search(body):
            tags.setdefault(tag, None)
    for entity in entities:
        lowered = entity.lower()
        if lowered in KNOWN_TECHNOLOGIES:
            tags.setdefault(lowered, None)
    return tuple(tags)


def synthesize_metadata(body: str) -> DocumentMetadata:
    """Derive the content metadata for *body*.  Deterministic, never raises."""
    purpose = classify_purpose(body)
    entities = extract_entities(body)
    return DocumentMetadata(
        title=extract_title(body),
        description=extract_description(body),
        purpose=purpose,
        audience=classify_audience(body),
        tags=derive_tags(body, purpose, entities),
        reading_time_minutes=reading_time(body),
        images=extract_images(body),
        entities=entities,
    )


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _quote(value: str) -> str:
    return json.dumps(value, ensure_ascii=False)


def _iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def render_frontmatter(meta: DocumentMetadata, url: str, doc_id: str, timestamp: datetime) -> str:
    """Render the ``---`` delimited front-matter block (without trailing blank line)."""
    stamp = _quote(_iso(timestamp))
    lines = [
        FRONTMATTER_DELIMITER,
        f"doc-id: {_quote(doc_id)}",
        f"title: {_quote(meta.title)}",
        f"description: {_quote(meta.description)}",
        f"created-date: {stamp}",
        f"updated-date: {stamp}",
        f"source-url: {_quote(url)}",
        f"purpose: {_quote(meta.purpose)}",
        f"audience: {json.dumps(list(meta.audience))}",
        f"tags: {json.dumps(list(meta.tags))}",
        f"reading-time-minutes: {meta.reading_time_minutes}",
    ]
    if len(meta.images) == 1:
        lines.append(f"image: {_quote(meta.images[0])}")
    elif meta.images:
        lines.append("images-list:")
        lines.extend(f"  - {_quote(image)}" for image in meta.images)
    if meta.entities:
        lines.append("entities:")
        lines.extend(f"  - {_quote(entity)}" for entity in meta.entities)
    lines.append(FRONTMATTER_DELIMITER)
    return "\n".join(lines)


def _directive(comment: str, fields: dict[str, object]) -> str:
    return "\n".join(
        [
            f"<!-- AI-PROCESSOR: {comment} -->",
            "```ai-script",
            json.dumps(fields, indent=2),
            "```",
        ]
    )


def directive_blocks(body: str, now_ms: int) -> list[str]:
    """AI directive blocks gated on body length (summary > 1000, entities > 3000)."""
    blocks: list[str] = []
    if len(body) > SUMMARY_THRESHOLD:
        blocks.append(
            _directive(
                "Content blocks marked with ```ai-script are instructions for AI systems",
                {
                    "script-id": f"doc-summary-{now_ms}",
                    "prompt": _SUMMARY_PROMPT,
                    "auto-run": True,
                    "priority": "medium",
                    "output-format": "markdown",
                },
            )
        )
    if len(body) > ENTITY_THRESHOLD:
        blocks.append(
            _directive(
                "Entity extraction for long documents",
                {
                    "script-id": f"entity-extract-{now_ms}",
                    "prompt": _ENTITY_PROMPT,
                    "auto-run": False,
                    "interactive-type": "button",
                    "interactive-label": "Extract Key Entities",
                    "priority": "low",
                    "output-format": "markdown",
                },
            )
        )
    return blocks


def annotate(
    url: str,
    body: str,
    *,
    now: datetime | None = None,
    doc_id: str | None = None,
) -> str:
    """Return *body* wrapped in front matter and followed by its directive blocks.

    Args:
        url: Source URL recorded as ``source-url``.
        body: Extracted markdown.
        now: Timestamp for the created/updated dates (default: current UTC time).
        doc_id: Document ID (default: a fresh UUID4).
    """
    moment = now or datetime.now(timezone.utc)
    meta = synthesize_metadata(body)
    document = (
        render_frontmatter(meta, url, doc_id or str(uuid.uuid4()), moment)
        + "\n\n"
        + body
    )
    for block in directive_blocks(body, int(moment.timestamp() * 1000)):
        document += "\n\n" + block
    return document


def split_frontmatter(document: str) -> tuple[str, str]:
    """Split an annotated document into ``(frontmatter, remainder)``.

    Documents without front matter return ``("", document)``.
    """
    opening = FRONTMATTER_DELIMITER + "\n"
    if not document.startswith(opening):
        return "", document
    closing = "\n" + FRONTMATTER_DELIMITER + "\n"
    end = document.find(closing, len(FRONTMATTER_DELIMITER))
    if end == -1:
        return "", document
    split_at = end + len(closing)
    return document[:split_at].rstrip("\n"), document[split_at:].lstrip("\n")
