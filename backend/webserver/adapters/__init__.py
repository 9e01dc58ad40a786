"""Adapters for the core protocols."""
