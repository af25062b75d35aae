"""Validation — cross-field configuration rules."""
