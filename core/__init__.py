"""
Core Package

Contains the provider-agnostic core logic including:
- SourceAdapter: Abstract base class defining the contract for all market data sources
- SourceRegistry: Adapter registry with per-kind priority lists
- Schemas: Pydantic models for the canonical data model (PriceTick, Candle, OrderBookSnapshot, ...)
- Symbols: Normalization of symbol spellings to the canonical BASEQUOTE form

This layer ensures all sources follow the same interface, so providers can be
added or reordered through configuration alone.
"""
