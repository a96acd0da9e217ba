"""Fusion gateway: generative fusion backend with retry and rate limiting."""
