"""Job queue module."""
