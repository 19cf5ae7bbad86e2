"""Synthetic navigation session generators."""
