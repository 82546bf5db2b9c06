"""
Source Connectors Package

This package contains one module per upstream market data provider.
Each provider (Binance, OKX, CoinGecko, a backend proxy) has its own subfolder with:
- api_client.py: REST API logic and payload parsers
- __init__.py: The SourceAdapter implementation
- ws_client.py: WebSocket streaming logic (Binance only)

rest_client.py holds the shared aiohttp GET client every api_client builds on.
"""
