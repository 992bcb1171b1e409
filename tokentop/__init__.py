"""tokentop: terminal dashboard for AI token usage, costs and limits."""

__version__ = "0.1.0"
