"""Reliability — retry with backoff."""
