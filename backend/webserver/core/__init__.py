"""Core configuration, domain types and protocols."""
