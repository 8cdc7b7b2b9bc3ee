"""
Chunk-oriented batch execution engine.

Processes a possibly unbounded input stream in bounded chunks:
- Each chunk is committed (or rolled back) as one transaction
- Item failures are retried statelessly in place or statefully across
  transaction rollbacks
- Exhausted items are skipped and reported through a recovery sink

Architecture: Repeat Engine (completion policies) + Transaction Boundary
(propagation modes) + Retry Engine (keyed retry context store)
"""

__version__ = "0.1.0"
