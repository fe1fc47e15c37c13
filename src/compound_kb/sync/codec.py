"""Markdown codec for repository asset files.

An asset file is a delimited metadata block followed by a blank line and
the body::

    ---
    type: pitfall
    name: redis-timeout
    product_line: infra
    title: "Redis timeout"
    tags: ["redis", "latency"]
    created: 2025-01-01T00:00:00+00:00
    updated: 2025-01-01T00:00:00+00:00
    ---

    Body text.

The metadata parser is deliberately minimal: flat ``key: value`` pairs,
double- or single-quoted strings, and single-level inline arrays. It only
has to read what ``serialize`` writes; anything else is treated as a
non-asset file rather than an error.
"""

import hashlib
import logging
import re
from dataclasses import dataclass
from datetime import UTC, datetime

from pydantic import BaseModel, Field, ValidationError

from compound_kb.models.asset import (
    DEFAULT_PRODUCT_LINE,
    AssetInput,
    AssetType,
    KnowledgeAsset,
    check_slug,
)

logger = logging.getLogger(__name__)

KNOWLEDGE_ROOT = "knowledge"

_FRONTMATTER_RE = re.compile(r"\A---(\r?\n)(?:(.*?)\1)?---\1(.*)\Z", re.DOTALL)
_ARRAY_ITEM_RE = re.compile(r'\s*(?:"((?:[^"\\]|\\.)*)"|\'([^\']*)\'|([^,]+))')
_ESCAPE_RE = re.compile(r"\\(.)")
_ESCAPES = {"n": "\n", "r": "\r"}

FrontmatterValue = str | list[str]


class Frontmatter(BaseModel):
    """Metadata block of an asset file, in serialization order."""

    type: str
    name: str
    product_line: str = DEFAULT_PRODUCT_LINE
    title: str
    tags: list[str] = Field(default_factory=list)
    created: str
    updated: str
    source_project: str | None = None


@dataclass
class ParsedDocument:
    """Result of ``parse``. ``frontmatter`` is None for non-asset files."""

    frontmatter: dict[str, FrontmatterValue] | None
    body: str


def parse(text: str) -> ParsedDocument:
    """Split a document into its metadata block and body."""
    match = _FRONTMATTER_RE.match(text)
    if not match:
        return ParsedDocument(frontmatter=None, body=text)

    newline, block, body = match.groups()
    # Drop the blank separator line and the terminating newline; the body
    # itself is returned byte for byte
    if body.startswith(newline):
        body = body[len(newline) :]
    if body.endswith(newline):
        body = body[: -len(newline)]
    return ParsedDocument(frontmatter=_parse_block(block or ""), body=body)


def serialize(frontmatter: Frontmatter, body: str) -> str:
    """Render the metadata block in fixed key order, a blank line, then the body."""
    lines = [
        f"type: {frontmatter.type}",
        f"name: {frontmatter.name}",
        f"product_line: {frontmatter.product_line}",
        f"title: {_quote(frontmatter.title)}",
        "tags: [" + ", ".join(_quote(t) for t in frontmatter.tags) + "]",
        f"created: {frontmatter.created}",
        f"updated: {frontmatter.updated}",
    ]
    if frontmatter.source_project:
        lines.append(f"source_project: {frontmatter.source_project}")
    return "---\n" + "\n".join(lines) + "\n---\n\n" + body + "\n"


def to_record(path: str, text: str) -> AssetInput | None:
    """Build an asset input from a repository file, or None if it is not an asset."""
    doc = parse(text)
    fm = doc.frontmatter
    if not fm or not fm.get("type") or not fm.get("name"):
        return None

    name = _scalar(fm.get("name"))
    tags = fm.get("tags") or []
    try:
        asset_type = AssetType(_scalar(fm.get("type")))
        return AssetInput(
            type=asset_type,
            name=name,
            product_line=_scalar(fm.get("product_line")) or DEFAULT_PRODUCT_LINE,
            title=_scalar(fm.get("title")) or name,
            content=doc.body,
            tags=tags if isinstance(tags, list) else [tags],
            source_project=_scalar(fm.get("source_project")) or None,
            repository_path=path,
            repository_hash=content_hash(text),
        )
    except (ValueError, ValidationError):
        logger.debug("Skipping %s: frontmatter does not describe a known asset", path)
        return None


def from_record(
    asset: AssetInput | KnowledgeAsset,
    *,
    created: str | None = None,
    now: datetime | None = None,
) -> str:
    """Serialize an asset to file content.

    ``created`` carries the original creation stamp when rewriting a file that
    already exists; without it the current time is used for both stamps.
    """
    stamp = (now or datetime.now(UTC)).isoformat()
    frontmatter = Frontmatter(
        type=asset.type.value,
        name=asset.name,
        product_line=asset.product_line,
        title=asset.title,
        tags=list(asset.tags),
        created=created or stamp,
        updated=stamp,
        source_project=asset.source_project,
    )
    return serialize(frontmatter, asset.content)


def created_stamp(text: str | None) -> str | None:
    """Return the ``created`` stamp of an existing asset file, if any."""
    if not text:
        return None
    fm = parse(text).frontmatter
    if not fm:
        return None
    return _scalar(fm.get("created")) or None


def derive_path(asset: AssetInput | KnowledgeAsset) -> str:
    """Deterministic repository location: knowledge/<product/line>/<name>.md."""
    check_slug(asset.name)
    product_dir = asset.product_line.replace(".", "/").strip("/") or DEFAULT_PRODUCT_LINE
    return f"{KNOWLEDGE_ROOT}/{product_dir}/{asset.name}.md"


def content_hash(text: str) -> str:
    """sha256 of a repository file's text, used to spot files that did not change."""
    return hashlib.sha256(text.encode()).hexdigest()


def is_asset_path(path: str) -> bool:
    """True for markdown files under the knowledge root."""
    return path.startswith(f"{KNOWLEDGE_ROOT}/") and path.endswith(".md")


def _parse_block(block: str) -> dict[str, FrontmatterValue]:
    result: dict[str, FrontmatterValue] = {}
    for line in block.split("\n"):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        key, sep, raw = stripped.partition(":")
        if not sep:
            continue
        result[key.strip()] = _parse_value(raw.strip())
    return result


def _parse_value(raw: str) -> FrontmatterValue:
    if len(raw) >= 2 and raw[0] == raw[-1] == '"':
        return _unescape(raw[1:-1])
    if len(raw) >= 2 and raw[0] == raw[-1] == "'":
        return raw[1:-1]
    if raw.startswith("[") and raw.endswith("]"):
        items = []
        for double, single, bare in _ARRAY_ITEM_RE.findall(raw[1:-1]):
            item = _unescape(double) if double else single or bare.strip()
            if item:
                items.append(item)
        return items
    return raw


def _quote(value: str) -> str:
    escaped = (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
    )
    return f'"{escaped}"'


def _unescape(value: str) -> str:
    return _ESCAPE_RE.sub(lambda m: _ESCAPES.get(m.group(1), m.group(1)), value)


def _scalar(value: FrontmatterValue | None) -> str:
    if value is None:
        return ""
    if isinstance(value, list):
        return ", ".join(value)
    return value
