"""FTS5/BM25 full-text search over knowledge assets."""

import logging

from compound_kb.db.backend import Database
from compound_kb.db.queries import row_to_asset
from compound_kb.models.search import SearchHit, SearchQuery, SearchResults

logger = logging.getLogger(__name__)

SNIPPET_RADIUS = 50
SNIPPET_FALLBACK_LENGTH = 100
MIN_KEYWORD_LENGTH = 3

_ORDER_SQL = {
    "relevance": "ORDER BY bm25_score, ka.id",
    "date_desc": "ORDER BY ka.updated_at_epoch DESC, ka.id DESC",
    "date_asc": "ORDER BY ka.updated_at_epoch ASC, ka.id ASC",
}


async def search_assets(db: Database, query: SearchQuery) -> SearchResults:
    """Ranked full-text lookup with optional type and product-line filters.

    An empty or unmatched query yields an empty result, not an error.
    """
    fts_query = _escape_fts_query(query.query)
    if not fts_query:
        return SearchResults()

    where = ""
    filters: list[str] = []
    if query.product_line:
        where += " AND ka.product_line = ?"
        filters.append(query.product_line)
    if query.type is not None:
        where += " AND ka.type = ?"
        filters.append(query.type.value)

    # Join FTS results back to knowledge_assets via rowid
    sql = f"""
        SELECT ka.*, bm25(knowledge_assets_fts) as bm25_score
        FROM knowledge_assets_fts
        JOIN knowledge_assets ka ON ka.id = knowledge_assets_fts.rowid
        WHERE knowledge_assets_fts MATCH ?{where}
        {_ORDER_SQL[query.order_by]}
        LIMIT ? OFFSET ?
    """  # noqa: S608
    count_sql = f"""
        SELECT COUNT(*) as total
        FROM knowledge_assets_fts
        JOIN knowledge_assets ka ON ka.id = knowledge_assets_fts.rowid
        WHERE knowledge_assets_fts MATCH ?{where}
    """  # noqa: S608

    try:
        cursor = await db.execute(sql, [fts_query, *filters, query.limit + 1, query.offset])
        rows = await cursor.fetchall()
        cursor = await db.execute(count_sql, [fts_query, *filters])
        count_row = await cursor.fetchone()
    except Exception:
        logger.warning("FTS search failed for query: %s", query.query, exc_info=True)
        return SearchResults()

    has_more = len(rows) > query.limit
    hits = [
        SearchHit(
            asset=row_to_asset(row),
            score=normalize_rank(row["bm25_score"]),
            snippet=make_snippet(row["content"], query.query),
        )
        for row in rows[: query.limit]
    ]
    total = count_row["total"] if count_row else len(hits)
    return SearchResults(items=hits, total=total, has_more=has_more)


def normalize_rank(rank: float | None) -> float:
    """Map a BM25 rank (more negative = better) onto 0-1, higher = more relevant."""
    if rank is None:
        return 0.0
    strength = max(0.0, -float(rank))
    return strength / (1.0 + strength)


def make_snippet(content: str, query: str) -> str:
    """Window of text around the earliest keyword hit.

    Keywords are query terms of at least three characters, matched
    case-insensitively. Without a hit the first hundred characters are used.
    """
    lowered = content.lower()
    best: tuple[int, int] | None = None
    for keyword in _keywords(query):
        idx = lowered.find(keyword)
        if idx != -1 and (best is None or idx < best[0]):
            best = (idx, len(keyword))

    if best is None:
        return content[:SNIPPET_FALLBACK_LENGTH]

    idx, length = best
    start = max(0, idx - SNIPPET_RADIUS)
    end = min(len(content), idx + length + SNIPPET_RADIUS)
    snippet = content[start:end]
    if start > 0:
        snippet = "..." + snippet
    if end < len(content):
        snippet = snippet + "..."
    return snippet


def _keywords(query: str) -> list[str]:
    words = (w.strip("\"'()*").lower() for w in query.split())
    return [w for w in words if len(w) >= MIN_KEYWORD_LENGTH]


def _escape_fts_query(query: str) -> str:
    """Convert a natural language query to a safe FTS5 query.

    Wraps each token in quotes to avoid FTS5 syntax errors from special chars.
    """
    tokens = query.split()
    if not tokens:
        return ""
    escaped = ['"{}"'.format(token.replace('"', '""')) for token in tokens]
    return " ".join(escaped)
