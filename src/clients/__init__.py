"""Clients for remote services managed by the provider."""
