"""Shared cache backends and the versioned decision cache."""
