"""
XRPC Transport

This package executes individual calls against `{base_url}/xrpc/{nsid}` endpoints.

Key Components:
- url.py: Base URL normalization, query encoding and endpoint URL construction
- chain.py: Middleware chain around aiohttp requests (metrics, debug logging)
- transport.py: RequestTransport, one call in, decoded body or typed error out
"""
