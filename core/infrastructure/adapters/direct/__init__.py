"""Direct (simple operation) service clients.

Import the aiohttp-backed client from its module when needed.
"""
from .local_client import LocalDirectServiceClient, build_local_handlers

__all__ = ["LocalDirectServiceClient", "build_local_handlers"]
