"""Search-related models."""

from typing import Literal

from pydantic import BaseModel, Field

from compound_kb.models.asset import AssetType, KnowledgeAsset


class SearchQuery(BaseModel):
    """Parameters for a knowledge asset search."""

    query: str
    product_line: str | None = None
    type: AssetType | None = None
    limit: int = Field(default=20, ge=1, le=100)
    offset: int = Field(default=0, ge=0)
    order_by: Literal["relevance", "date_desc", "date_asc"] = "relevance"


class SearchHit(BaseModel):
    """A single search hit with a normalized score and a content snippet."""

    asset: KnowledgeAsset
    score: float = Field(ge=0.0, le=1.0)
    snippet: str


class SearchResults(BaseModel):
    """One page of search hits."""

    items: list[SearchHit] = Field(default_factory=list)
    total: int = 0
    has_more: bool = False
