"""L1/L2 synchronization: codec, repository adapter, index and orchestrator."""

from compound_kb.sync.engine import SyncEngine
from compound_kb.sync.git_repository import GitCommandError, GitRepository, GitTimeoutError
from compound_kb.sync.index import IndexBuilder
from compound_kb.sync.lock import LockAcquisitionError, RepositoryLock
from compound_kb.sync.repository import Repository

__all__ = [
    "GitCommandError",
    "GitRepository",
    "GitTimeoutError",
    "IndexBuilder",
    "LockAcquisitionError",
    "Repository",
    "RepositoryLock",
    "SyncEngine",
]
