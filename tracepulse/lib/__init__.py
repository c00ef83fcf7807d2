"""Shared helpers: logging, JSON, hashing."""
