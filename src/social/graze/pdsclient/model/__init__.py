"""
Data Models

This package defines the value objects exchanged between the layers of the client.

Key Models:
- session.py: The authenticated Session returned by createSession / refreshSession

Models are immutable pydantic models. A Session is never mutated in place; the refresh
path replaces it wholesale, which lets callers compare access tokens to detect that
another call already renewed the session.
"""
