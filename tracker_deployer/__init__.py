"""Tracker Deployer — lifecycle orchestration for BitTorrent tracker hosts."""

__version__ = "0.1.0"
