"""Terminal AI agent with a supervised auto-run loop."""

__version__ = "0.1.0"
