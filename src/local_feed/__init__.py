"""Local-first feed aggregator: fetch, sanitize, store and search feed entries."""
