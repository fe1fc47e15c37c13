"""Knowledge asset models."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field, field_validator


class AssetType(StrEnum):
    """Classification of knowledge assets."""

    PITFALL = "pitfall"
    DECISION_RECORD = "decision-record"
    GLOSSARY = "glossary"
    BEST_PRACTICE = "best-practice"
    PATTERN = "pattern"
    DISCOVERY = "discovery"
    SKILL = "skill"
    REFERENCE = "reference"

    @classmethod
    def _missing_(cls, value: object) -> "AssetType | None":
        # Repositories written before the rename still carry "adr"
        if isinstance(value, str) and value.lower() == "adr":
            return cls.DECISION_RECORD
        return None


DEFAULT_PRODUCT_LINE = "general"


def check_slug(name: str) -> str:
    """Return ``name`` if it is usable as a repository file name, else raise ValueError."""
    if not name or "/" in name or "\\" in name or name.startswith("."):
        raise ValueError(f"Invalid asset name for a repository path: {name!r}")
    return name


class AssetInput(BaseModel):
    """Fields supplied when sinking or importing an asset.

    ``repository_path`` and ``repository_hash`` are only set by pull imports,
    where the asset is already known to live in the repository.
    """

    type: AssetType
    name: str = Field(min_length=1)
    product_line: str = DEFAULT_PRODUCT_LINE
    title: str
    content: str
    tags: list[str] = Field(default_factory=list)
    source_project: str | None = None
    repository_path: str | None = None
    repository_hash: str | None = None

    @field_validator("name")
    @classmethod
    def _valid_slug(cls, name: str) -> str:
        return check_slug(name)

    @field_validator("tags")
    @classmethod
    def _dedupe_tags(cls, tags: list[str]) -> list[str]:
        """Tags are an ordered set: strip blanks and drop repeats, keeping first order."""
        seen: dict[str, None] = {}
        for tag in tags:
            tag = tag.strip()
            if tag:
                seen.setdefault(tag, None)
        return list(seen)


class KnowledgeAsset(BaseModel):
    """A knowledge asset row in the local cache.

    ``repository_hash`` is the sha256 of the file text last written to or
    read from ``repository_path``.
    """

    id: int
    type: AssetType
    name: str
    product_line: str = DEFAULT_PRODUCT_LINE
    tags: list[str] = Field(default_factory=list)
    title: str
    content: str
    source_project: str | None = None
    repository_path: str | None = None
    repository_hash: str | None = None
    promoted: bool = False
    created_at: datetime
    created_at_epoch: int
    updated_at: datetime
    updated_at_epoch: int


class AssetStats(BaseModel):
    """Aggregate counts over the local cache."""

    total: int = 0
    promoted: int = 0
    unpromoted: int = 0
    by_type: dict[str, int] = Field(default_factory=dict)
    by_product_line: dict[str, int] = Field(default_factory=dict)
