"""Default wrapper scripts, one per supported scheduler."""
