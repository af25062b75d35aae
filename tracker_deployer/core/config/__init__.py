"""Configuration — environment config files and runtime settings."""
