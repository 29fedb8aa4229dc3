"""AutoTDP command-line application."""
