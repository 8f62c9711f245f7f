"""Version control and code hosting adapters."""
