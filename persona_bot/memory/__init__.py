from .context import ContextStore
from .relationships import RelationshipStore
from .store import MemoryStore

__all__ = ["ContextStore", "MemoryStore", "RelationshipStore"]
