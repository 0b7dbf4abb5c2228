"""Binding persistence."""
