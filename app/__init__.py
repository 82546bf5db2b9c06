"""
FastAPI Application Package

This package contains the FastAPI backend proxy. It exposes the aggregated,
failover-backed market data over REST (/api/market/*) and streams cache
updates over WebSocket (/ws/market/{kind}).
"""
