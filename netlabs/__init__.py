"""Asyncio network services: DNS, log collection, remote calculation and a WebSocket chat server."""

__version__ = "0.1.0"