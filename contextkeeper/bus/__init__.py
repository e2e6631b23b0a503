"""Message events."""
