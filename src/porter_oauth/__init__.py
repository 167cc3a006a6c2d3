"""Porter OAuth: OAuth 2.0 authorization server for the Porter travel agent."""

__version__ = "1.0.0"
