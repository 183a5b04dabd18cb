"""
Core shipping components.

This package contains the buffering and delivery pipeline:
- Stream routing and record formatting
- Generation buffer with count and lifetime triggers
- Push payload encoding
- Async HTTP transport with retries
- Metrics collection
"""
