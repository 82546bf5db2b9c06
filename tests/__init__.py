"""
Test Suite

Unit tests for the market data engine.

Structure:
- tests/unit/: One module per component (adapters, failover, cache, hub,
  scheduler, service facade, HTTP routes). Upstream HTTP is mocked by
  monkeypatching `_get` or by scripted SourceAdapter fakes; nothing talks
  to real exchanges.

Uses pytest with pytest-asyncio for testing async functionality.
"""
