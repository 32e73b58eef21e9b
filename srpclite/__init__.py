"""A small RPC framework with a pickle codec, HTTP tunnelling, discovery and broadcast calls."""

__version__ = "0.1.0"