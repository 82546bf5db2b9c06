"""
Storage Package

Handles in-memory caching of market data.

Current implementation:
- MarketCache: latest ticker and order book per symbol, candle series per
  (symbol, interval), write timestamps for staleness checks and version
  tokens that reject out-of-order writes
"""
