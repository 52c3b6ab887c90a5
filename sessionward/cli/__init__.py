"""Command line tools for sessionward."""
