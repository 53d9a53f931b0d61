"""Webhook callback module."""
