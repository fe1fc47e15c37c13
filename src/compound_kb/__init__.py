"""Two-tier knowledge store: a local SQLite cache synchronized with a git repository."""
