"""docflow: turns community messages into reviewed documentation change proposals."""

__version__ = "0.3.0"
