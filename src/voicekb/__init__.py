"""Voice and text question answering over a knowledge base."""

__version__ = "0.1.0"
