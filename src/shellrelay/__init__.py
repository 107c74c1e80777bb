"""shellrelay: relay an interactive command interpreter to a remote consumer."""

__version__ = "0.1.0"
