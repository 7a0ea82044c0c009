from .guilds import MemoryGuildsMixin
from .messages import MemoryMessagesMixin
from .relationships import MemoryRelationshipsMixin
from .replies import MemoryRepliesMixin
from .schema import MemorySchemaMixin

__all__ = [
    "MemorySchemaMixin",
    "MemoryGuildsMixin",
    "MemoryRelationshipsMixin",
    "MemoryMessagesMixin",
    "MemoryRepliesMixin",
]
