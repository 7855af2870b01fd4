"""Domain modules driven by job handlers."""
