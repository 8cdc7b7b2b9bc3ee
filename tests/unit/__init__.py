"""
Unit tests for the Chunk Engine.

Test individual components in isolation:
- Completion policies and the repeat engine (sequential and concurrent)
- Exception classifiers, retry policy and retry engine (both modes)
- Transaction boundary propagation and synchronizations
- Chunk orchestrator scenarios (rollback, skip, filter, concurrency)
- Redis retry context store (mocked Redis)
"""
