"""Format adapters: each turns one file format into a ``ParseResult``."""
