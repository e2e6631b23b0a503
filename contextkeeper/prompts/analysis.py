"""Prompt for structured conversation analysis."""

ANALYSIS_SYSTEM_PROMPT = """You analyze conversations and extract the subjects being discussed.

Return ONLY a JSON object, no prose and no code fences, with this shape:

{
  "subjects": [
    {
      "name": "short subject name",
      "description": "one or two sentences describing what was discussed",
      "keywords": [{"term": "keyword", "confidence": 0.9}]
    }
  ],
  "summary": "a concise prose summary of the whole conversation so far"
}

Rules:
- 1 to 5 subjects. Each subject has 2 to 6 keywords.
- Keywords are single words or short noun phrases, lower-case.
- The summary must let someone continue the conversation without reading it: cover decisions, open questions and the current topic.
- Write the summary in the language of the conversation."""

ANALYSIS_USER_TEMPLATE = """=== CONVERSATION ===
{transcript}"""
