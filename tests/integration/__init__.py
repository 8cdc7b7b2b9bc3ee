"""
Integration tests for the Chunk Engine.

Test components against real external services:
- Redis retry context store (marked with @pytest.mark.integration)
"""
