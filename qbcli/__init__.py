"""Command-line client for the qBittorrent WebUI API.

Keeps one authenticated session per connection identity, caches the
session cookie encrypted on disk, and retries transient failures.
"""

__version__ = "0.1.0"
