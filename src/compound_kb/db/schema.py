"""DDL and migrations for the local knowledge cache."""

from compound_kb.db.backend import Database

SCHEMA_VERSION = 1

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS knowledge_assets (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    type TEXT NOT NULL CHECK(type IN (
        'pitfall', 'decision-record', 'glossary', 'best-practice',
        'pattern', 'discovery', 'skill', 'reference'
    )),
    name TEXT NOT NULL,
    product_line TEXT NOT NULL DEFAULT 'general',
    tags TEXT NOT NULL DEFAULT '[]',
    title TEXT NOT NULL,
    content TEXT NOT NULL,
    source_project TEXT,
    repository_path TEXT,
    repository_hash TEXT,
    promoted INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    created_at_epoch INTEGER NOT NULL,
    updated_at TEXT NOT NULL,
    updated_at_epoch INTEGER NOT NULL,
    UNIQUE(name, product_line)
);

CREATE INDEX IF NOT EXISTS idx_assets_type ON knowledge_assets(type);
CREATE INDEX IF NOT EXISTS idx_assets_product_line ON knowledge_assets(product_line);
CREATE INDEX IF NOT EXISTS idx_assets_promoted ON knowledge_assets(promoted, created_at_epoch);
CREATE INDEX IF NOT EXISTS idx_assets_path ON knowledge_assets(repository_path);
CREATE INDEX IF NOT EXISTS idx_assets_updated ON knowledge_assets(updated_at_epoch DESC);

CREATE VIRTUAL TABLE IF NOT EXISTS knowledge_assets_fts USING fts5(
    name,
    title,
    content,
    tags,
    product_line,
    content='knowledge_assets',
    content_rowid='id',
    tokenize='porter unicode61'
);

-- Triggers to keep FTS in sync with the content table
CREATE TRIGGER IF NOT EXISTS assets_fts_ai AFTER INSERT ON knowledge_assets BEGIN
    INSERT INTO knowledge_assets_fts(rowid, name, title, content, tags, product_line)
    VALUES (new.id, new.name, new.title, new.content, new.tags, new.product_line);
END;

CREATE TRIGGER IF NOT EXISTS assets_fts_ad AFTER DELETE ON knowledge_assets BEGIN
    INSERT INTO knowledge_assets_fts(
        knowledge_assets_fts, rowid, name, title, content, tags, product_line
    ) VALUES (
        'delete', old.id, old.name, old.title, old.content, old.tags, old.product_line
    );
END;

CREATE TRIGGER IF NOT EXISTS assets_fts_au AFTER UPDATE ON knowledge_assets BEGIN
    INSERT INTO knowledge_assets_fts(
        knowledge_assets_fts, rowid, name, title, content, tags, product_line
    ) VALUES (
        'delete', old.id, old.name, old.title, old.content, old.tags, old.product_line
    );
    INSERT INTO knowledge_assets_fts(rowid, name, title, content, tags, product_line)
    VALUES (new.id, new.name, new.title, new.content, new.tags, new.product_line);
END;

CREATE TABLE IF NOT EXISTS sync_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    direction TEXT NOT NULL CHECK(direction IN ('pull', 'push', 'both')),
    file_path TEXT,
    commit_id TEXT,
    status TEXT NOT NULL CHECK(status IN ('success', 'failed', 'skipped')),
    message TEXT,
    created_at TEXT NOT NULL,
    created_at_epoch INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_sync_log_direction ON sync_log(direction, status);
CREATE INDEX IF NOT EXISTS idx_sync_log_created ON sync_log(created_at_epoch DESC);
"""


async def apply_schema(db: Database) -> None:
    """Apply the database schema."""
    await db.executescript(SCHEMA_SQL)

    # Check schema version
    cursor = await db.execute("SELECT version FROM schema_version")
    row = await cursor.fetchone()
    if row is None:
        await db.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))

    await db.commit()
