"""Subjects, keywords and summaries persisted per conversation."""
