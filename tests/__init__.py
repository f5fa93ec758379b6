"""Curated Context Test Suite

Test organization:
- unit/memory/: extraction tiers, store, queue, consolidator, config
- integration/: full pipeline passes and the daemon's re-entrancy guard

Running tests:
    # All tests
    pytest

    # Specific module
    pytest tests/unit/memory/test_store.py

    # Excluding end-to-end passes
    pytest -m "not integration"
"""
