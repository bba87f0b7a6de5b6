"""Observability: structured logging and correlation IDs."""

from bylawqa.observability.logging import correlation_id, get_correlation_id, new_correlation_id, setup_logging

__all__ = ["correlation_id", "get_correlation_id", "new_correlation_id", "setup_logging"]
