"""Lifecycle — stage transitions."""
