"""Command-line interface for Dynabatch."""
