"""Command-line entry points: daily run, previews, and maintenance commands."""
