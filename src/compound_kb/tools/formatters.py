"""Compact output formatters for MCP tool responses."""

from compound_kb.models.asset import AssetStats, KnowledgeAsset
from compound_kb.models.search import SearchHit
from compound_kb.models.sync import GitResult, SyncLogEntry, SyncReport


def format_asset_header(asset: KnowledgeAsset) -> str:
    """Format: [12] pitfall | infra/redis-timeout | Redis timeout."""
    return f"[{asset.id}] {asset.type.value} | {asset.product_line}/{asset.name} | {asset.title}"


def format_asset_meta(asset: KnowledgeAsset) -> str:
    """Format: #tag1 #tag2 | source-project | knowledge/infra/x.md  [LOCAL]."""
    parts: list[str] = []
    if asset.tags:
        parts.append(" ".join(f"#{t}" for t in asset.tags))
    if asset.source_project:
        parts.append(asset.source_project)
    if asset.repository_path:
        parts.append(asset.repository_path)
    line = " | ".join(parts)
    if not asset.promoted:
        line = f"{line}  [LOCAL]" if line else "[LOCAL]"
    return line


def format_asset_compact(asset: KnowledgeAsset, snippet: str | None = None) -> str:
    """Header + meta + optional snippet. For kb_search and kb_list."""
    lines = [format_asset_header(asset)]
    meta = format_asset_meta(asset)
    if meta:
        lines.append(f"  {meta}")
    if snippet:
        lines.append(f"  {snippet}")
    return "\n".join(lines)


def format_asset_full(asset: KnowledgeAsset) -> str:
    """Header + meta + full content. For kb_get."""
    lines = [format_asset_header(asset)]
    meta = format_asset_meta(asset)
    if meta:
        lines.append(f"  {meta}")
    lines.append(f"  updated {asset.updated_at.isoformat()}")
    lines.append("")
    lines.append(asset.content)
    return "\n".join(lines)


def format_search_hit(hit: SearchHit) -> str:
    """Compact asset with relevance score and snippet."""
    return format_asset_compact(hit.asset, hit.snippet) + f"\n  score {hit.score:.2f}"


def format_result_list(
    formatted: list[str],
    total: int | None = None,
    has_more: bool = False,
    note: str | None = None,
) -> str:
    """Count + note + entries joined by blank lines."""
    if not formatted:
        return "No results found."

    count = f"{len(formatted)} result(s)"
    if total is not None and total != len(formatted):
        count += f" of {total}"
    if has_more:
        count += " (more available)"
    lines = [count]
    if note:
        lines.append(f"Note: {note}")
    lines.append("")
    lines.append("\n\n".join(formatted))
    return "\n".join(lines)


def format_sync_entry(entry: SyncLogEntry) -> str:
    """Format: push success: Pushed 2 assets to repository (abc12345)."""
    line = f"{entry.direction.value} {entry.status.value}"
    if entry.message:
        line += f": {entry.message}"
    if entry.commit_id:
        line += f" ({entry.commit_id[:8]})"
    return line


def format_sync_report(report: SyncReport) -> str:
    """One line per step that ran, plus the remote push outcome."""
    lines = [f"Sync ({report.direction.value}): {'ok' if report.success else 'failed'}"]
    for entry in (report.pull, report.push):
        if entry is not None:
            lines.append(f"  {format_sync_entry(entry)}")
    if report.remote_push is not None:
        lines.append(f"  remote {format_git_result(report.remote_push)}")
    return "\n".join(lines)


def format_git_result(result: GitResult) -> str:
    """Format: ok (abc12345) or failed: <error>."""
    if result.success:
        return f"ok ({result.commit_id[:8]})" if result.commit_id else "ok"
    return f"failed: {result.error or 'unknown error'}"


def format_stats(stats: AssetStats) -> str:
    """Totals plus per-type and per-product-line breakdowns."""
    lines = [f"{stats.total} asset(s): {stats.promoted} promoted, {stats.unpromoted} local only"]
    if stats.by_type:
        lines.append("By type: " + _format_counts(stats.by_type))
    if stats.by_product_line:
        lines.append("By product line: " + _format_counts(stats.by_product_line))
    return "\n".join(lines)


def _format_counts(counts: dict[str, int]) -> str:
    return ", ".join(f"{k} {v}" for k, v in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0])))
