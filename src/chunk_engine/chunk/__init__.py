"""
Chunk-oriented processing.

Main Components:
    - ChunkOrchestrator: Read-process-write job in transactional chunks
    - Chunk: Outputs and skips of one chunk transaction
    - ItemReader / ItemProcessor / ItemWriter / RecoveryListener: Collaborator interfaces
    - QueueItemReader / ListItemWriter / CollectingRecoveryListener: In-memory collaborators

Usage:
    >>> from chunk_engine.chunk import ChunkOrchestrator, QueueItemReader, ListItemWriter
    >>> report = ChunkOrchestrator(reader, writer, boundary, chunk_size=5).run()
"""

from chunk_engine.chunk.interfaces import (
    EXHAUSTED,
    ItemProcessor,
    ItemReader,
    ItemWriter,
    RecoveryListener,
)
from chunk_engine.chunk.memory import CollectingRecoveryListener, ListItemWriter, QueueItemReader
from chunk_engine.chunk.model import Chunk
from chunk_engine.chunk.orchestrator import ChunkOrchestrator

__all__ = [
    "EXHAUSTED",
    "Chunk",
    "ChunkOrchestrator",
    "CollectingRecoveryListener",
    "ItemProcessor",
    "ItemReader",
    "ItemWriter",
    "ListItemWriter",
    "QueueItemReader",
    "RecoveryListener",
]
