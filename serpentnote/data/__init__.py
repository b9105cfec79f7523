"""Bundled data files (built-in autocomplete vocabulary)."""
