"""Engine — step contract and pipeline runner."""
