"""Helpers to parse Responses API outputs."""

import json
from typing import Any, Dict, List, Optional

from models.processed_item import ContentAnalysis


def parse_function_call(response: Any, *, tool_name: str) -> Dict[str, Any]:
    """Extract the function call arguments for the specified tool name."""
    for item in getattr(response, "output", None) or []:
        if getattr(item, "type", None) == "function_call" and getattr(item, "name", None) == tool_name:
            args = json.loads(getattr(item, "arguments", "{}") or "{}")
            if not isinstance(args, dict):
                raise ValueError("Function call arguments must be a JSON object.")
            return args
    raise RuntimeError(f"No function_call output for '{tool_name}' found in Responses API output.")


def to_content_analysis(args: Dict[str, Any]) -> ContentAnalysis:
    """Build a ContentAnalysis from tool arguments, tolerating missing fields."""
    url = str(args.get("webpage_url") or "").strip()
    if url.lower() in ("", "none", "unknown", "n/a"):
        url = ""
    topics: List[str] = [str(t).strip() for t in args.get("research_topics") or [] if str(t).strip()]
    return ContentAnalysis(
        content_type=str(args.get("content_type") or "unknown").strip() or "unknown",
        webpage_url=url or None,
        research_topics=topics,
        user_intent=str(args.get("user_intent") or "").strip(),
        follow_up=str(args.get("follow_up") or "").strip(),
    )


def extract_output_text(response: Any) -> str:
    """Return plain output text when the model answered without calling the tool."""
    text = getattr(response, "output_text", None)
    return text.strip() if isinstance(text, str) else ""


def extract_usage(response: Any) -> Dict[str, Optional[int]]:
    """Return token usage information from the response, if present."""
    usage = getattr(response, "usage", None)
    return {
        "input_tokens": getattr(usage, "input_tokens", None) if usage else None,
        "output_tokens": getattr(usage, "output_tokens", None) if usage else None,
    }
