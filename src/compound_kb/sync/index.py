"""Repository index: one JSON summary of every asset in the knowledge root."""

import json
import logging
from collections import Counter
from datetime import UTC, datetime

from pydantic import ValidationError

from compound_kb.models.sync import IndexEntry, RepositoryIndex
from compound_kb.sync.codec import KNOWLEDGE_ROOT, parse, to_record
from compound_kb.sync.repository import Repository

logger = logging.getLogger(__name__)

INDEX_PATH = f"{KNOWLEDGE_ROOT}/_index.json"
EMPTY_SUMMARY = "Knowledge base is empty."


class IndexBuilder:
    """Generates, persists and summarizes the repository index."""

    def __init__(self, repo: Repository):
        """Initialize with the repository the index describes."""
        self.repo = repo

    def generate(self) -> RepositoryIndex:
        """Walk the knowledge root and aggregate every file that parses as an asset."""
        entries: list[IndexEntry] = []
        for path in self.repo.list_markdown_files(KNOWLEDGE_ROOT):
            text = self.repo.read_file(path)
            if not text:
                continue
            record = to_record(path, text)
            if record is None:
                continue
            updated = (parse(text).frontmatter or {}).get("updated", "")
            entries.append(
                IndexEntry(
                    path=path,
                    type=record.type.value,
                    name=record.name,
                    product_line=record.product_line,
                    title=record.title,
                    tags=record.tags,
                    updated=updated if isinstance(updated, str) else "",
                )
            )

        return RepositoryIndex(
            generated_at=datetime.now(UTC).isoformat(),
            total=len(entries),
            by_type=dict(Counter(e.type for e in entries)),
            by_product_line=dict(Counter(e.product_line for e in entries)),
            entries=[e.to_line() for e in entries],
        )

    def write(self, index: RepositoryIndex | None = None) -> RepositoryIndex:
        """Persist ``index`` (freshly generated if omitted) at INDEX_PATH."""
        if index is None:
            index = self.generate()
        self.repo.write_file(INDEX_PATH, index.model_dump_json(indent=2) + "\n")
        logger.info("Wrote index with %d entries", index.total)
        return index

    def read(self) -> RepositoryIndex | None:
        """Load the persisted index, or None if it is missing or unreadable."""
        text = self.repo.read_file(INDEX_PATH)
        if not text:
            return None
        try:
            return RepositoryIndex.model_validate(json.loads(text))
        except (ValueError, ValidationError) as e:
            logger.warning("Ignoring unreadable index %s: %s", INDEX_PATH, e)
            return None

    def summarize(self, index: RepositoryIndex | None = None) -> str:
        """Short digest of counts by product line and by type."""
        if index is None:
            index = self.read() or self.generate()
        if index.total == 0:
            return EMPTY_SUMMARY

        parts = [f"Knowledge base holds {index.total} assets"]
        if index.by_product_line:
            parts.append("Product lines: " + _format_counts(index.by_product_line))
        if index.by_type:
            parts.append("Types: " + _format_counts(index.by_type))
        return ". ".join(parts) + "."


def _format_counts(counts: dict[str, int]) -> str:
    ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return ", ".join(f"{key}({count})" for key, count in ordered)
