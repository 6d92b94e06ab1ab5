"""Server services: background tasks, analysis operation, rate limiting."""
