"""Schema definitions for the screenshot summarization tool."""

from typing import Any, Dict

FUNCTION_NAME = "summarize_screenshot"

CONTENT_TYPES = ["webpage", "app", "document", "social", "game", "other"]

FUNCTION_DEFINITION: Dict[str, Any] = {
    "type": "function",
    "name": FUNCTION_NAME,
    "description": (
        "Return a brief summary of the screenshot together with its content type and likely user intent."
    ),
    "parameters": {
        "type": "object",
        "properties": {
            "summary": {
                "type": "string",
                "description": "Two or three sentences describing what is shown and why the user captured it.",
            },
            "content_type": {
                "type": "string",
                "description": "Kind of content on screen.",
                "enum": CONTENT_TYPES,
            },
            "webpage_url": {
                "type": "string",
                "description": "Visible URL or domain for webpages, or 'none'.",
            },
            "research_topics": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Key topics when the content is research related, otherwise empty.",
            },
            "user_intent": {
                "type": "string",
                "description": "Most likely reason the user took this screenshot.",
            },
            "follow_up": {
                "type": "string",
                "description": "Suggested follow-up action.",
            },
        },
        "required": ["summary", "content_type", "webpage_url", "research_topics", "user_intent", "follow_up"],
        "additionalProperties": False,
    },
    "strict": True,
}
