"""Prompts and templates for summarization and context injection."""

SUMMARY_SYSTEM_PROMPT = (
    "You are a summarization assistant. Output only valid JSON, no markdown."
)

# Conversation window summarization
SUMMARY_PROMPT = """Summarize this conversation concisely. Extract:
1. A brief summary (2-3 sentences max)
2. Key points (bullet list, max {max_key_points})
3. Important entities (people, projects, decisions, tasks mentioned)

Format your response EXACTLY as JSON:
{{
  "summary": "Brief summary here",
  "keyPoints": ["point 1", "point 2"],
  "entities": [{{"type": "person|project|decision|task|date|file|url", "value": "name", "mentions": 1}}]
}}

Conversation:
{conversation}"""

# One injected system entry per snapshot
MEMORY_ENTRY = """Conversation memory ({first} - {last}, {message_count} messages)
{summary}"""

MEMORY_KEY_POINTS = "Key points:\n{points}"

MEMORY_ENTITIES = "Mentioned: {entities}"
