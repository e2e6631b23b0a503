"""Conversation transport capability."""
