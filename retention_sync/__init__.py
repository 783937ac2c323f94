"""Mirror Marketing Cloud folders and data extensions and normalize their retention settings."""

__version__ = "0.1.0"
