"""Prompt texts."""
