"""Prompt builders for screenshot summarization."""

from typing import Optional


def build_system_prompt() -> str:
    """Return the system prompt for the screenshot analyst."""
    return (
        "You are an assistant that looks at screenshots a user just captured. "
        "Describe briefly what is shown and what the user most likely wants to do with it. "
        "Be concrete, avoid speculation beyond what is visible, and keep the summary to a few sentences."
    )


def build_user_prompt(desktop: bool, filename: Optional[str] = None, app: Optional[str] = None) -> str:
    """Return the user prompt tailored to the screenshot origin."""
    device = "desktop" if desktop else "iPhone"
    details = []
    if filename:
        details.append(f"filename '{filename}'")
    if app:
        details.append(f"captured from {app}")
    detail_text = f" ({', '.join(details)})" if details else ""

    return (
        f"Analyze this {device} screenshot{detail_text} briefly. What is shown and what might be the user's intent? "
        "Also classify the content type (webpage, app, document, social, game or other), "
        "extract a visible URL or domain if it is a webpage, list key topics if it is research related, "
        "and suggest a follow-up action."
    )
