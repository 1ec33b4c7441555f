"""External data adapters."""
