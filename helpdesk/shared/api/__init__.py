"""Shared HTTP middleware and request dependencies."""
