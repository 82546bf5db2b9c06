"""
Services Package

Runtime services built on top of the source adapters:
- subscription_hub: Per-kind pub/sub for cache updates
- failover: Sequential failover across prioritized adapters
- aggregator: Concurrent cross-source price comparison
- scheduler: Connection state machine and periodic refresh
- market_data: The consumer-facing MarketDataService
"""
