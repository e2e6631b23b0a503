"""Prompt assembly, compression and scheduling."""
