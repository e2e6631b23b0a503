"""System prompts used when assembling conversation context."""

DEFAULT_SYSTEM_PROMPT = """You are a helpful assistant taking part in a long-running conversation.

Earlier parts of the conversation and related past discussions may be given to you in compressed form:
- "Past subjects" lists themes discussed before. Each line starts with an abstraction level from 1 (very general) to 42 (very specific).
- A "Conversation summary" replaces older messages that no longer fit in your context.

Treat compressed context as reliable background. Answer the newest message directly and keep continuity with what was said before."""

MINIMAL_SYSTEM_PROMPT = "You are a helpful assistant. Answer the user's message."

RESTART_HEADER = "[Conversation summary]"

RESTART_TEMPLATE = """{header}
This conversation was condensed after {message_count} messages to stay within the model's context window.

{summary}"""

FALLBACK_TEMPLATE = """Previous conversation covered: {topics}.
{message_count} messages exchanged between {participants} participant(s)."""
