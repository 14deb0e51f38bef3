"""Session records, configuration and data validation."""
