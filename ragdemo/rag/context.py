"""Conversation memory and context assembly.

Retrieved chunks become ``context`` entries in a fresh, append-only
conversation memory, highest score first, ahead of any user turns.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator, Optional, Tuple
import structlog

from ragdemo.rag.retriever import RetrievalResult

logger = structlog.get_logger()


class Role(str, Enum):
    CONTEXT = "context"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class MemoryEntry:
    role: Role
    content: str


class ConversationMemory:
    """Ordered log of role-tagged entries. Entries are only ever appended."""

    def __init__(self):
        self._entries = []

    def append(self, role: Role, content: str) -> MemoryEntry:
        entry = MemoryEntry(role=Role(role), content=content)
        self._entries.append(entry)
        return entry

    @property
    def entries(self) -> Tuple[MemoryEntry, ...]:
        return tuple(self._entries)

    def context_entries(self) -> Tuple[MemoryEntry, ...]:
        return tuple(e for e in self._entries if e.role is Role.CONTEXT)

    def __iter__(self) -> Iterator[MemoryEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self._entries)


def assemble(
    results: Iterable[RetrievalResult],
    memory: Optional[ConversationMemory] = None,
) -> ConversationMemory:
    """Append one context entry per retrieval result, in the order received.

    Args:
        results: Retrieval results, best first
        memory: Memory to append to (a new one if not provided)

    Returns:
        The memory holding the context entries
    """
    memory = memory if memory is not None else ConversationMemory()

    count = 0
    for result in results:
        memory.append(Role.CONTEXT, result.text)
        count += 1

    logger.debug("context_assembled", context_entries=count, memory_size=len(memory))
    return memory
