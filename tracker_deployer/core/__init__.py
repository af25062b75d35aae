"""Core — domain models, engine, lifecycle and persistence."""
