"""Canonical event schema."""
