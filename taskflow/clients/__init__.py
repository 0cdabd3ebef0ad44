"""Clients for external model providers."""
