"""CLI command groups registered by ``tracker_deployer.main``."""
