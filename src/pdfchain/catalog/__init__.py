"""Durable catalog storage."""
