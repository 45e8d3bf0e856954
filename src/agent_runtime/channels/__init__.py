"""Chat-platform connectors."""
