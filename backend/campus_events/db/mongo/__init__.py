"""Shared MongoDB utilities.

This package centralizes:
- pymongo client configuration and index bootstrap
- retry/backoff policy and driver error mapping
- page/limit normalization and pagination metadata
- typed, expressive errors for consistent HTTP problem responses
"""
