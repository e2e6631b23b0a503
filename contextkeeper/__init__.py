"""contextkeeper - context budgeting for long-running conversational agents."""

__version__ = "0.1.0"
__logo__ = "🧭"
