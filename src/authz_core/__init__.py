"""Centralized, store-scoped authorization oracle."""
