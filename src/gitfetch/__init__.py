"""gitfetch: fetch a git revision into a workspace and record what was fetched."""

__version__ = "0.1.0"
