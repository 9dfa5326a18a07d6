"""Flask API for a show and episode catalogue with metadata providers and webhooks."""

__version__ = "0.1.0"