"""Caption and keyboard builders for screenshot notifications."""

from __future__ import annotations

import html
from datetime import datetime
from typing import Any, Dict, List, Optional

from models.processed_item import ContentAnalysis, ItemSource

# Telegram rejects photo captions longer than this.
CAPTION_LIMIT = 1024
MESSAGE_LIMIT = 4096


def source_label(source: ItemSource) -> str:
	if source is ItemSource.DESKTOP_AUTO:
		return "🖥️ Desktop Screenshot"
	if source is ItemSource.MANUAL_UPLOAD:
		return "🗂️ Uploaded Screenshot"
	return "📱 iPhone Screenshot"


def build_header(source: ItemSource, timestamp: datetime) -> str:
	return f"<b>{source_label(source)}</b> <i>{timestamp.strftime('%H:%M:%S')}</i>"


def build_body(summary: Optional[str], error: Optional[str]) -> str:
	if summary:
		return f"<b>AI Analysis:</b>\n\n{html.escape(summary)}"
	return f"<b>Analysis failed:</b> {html.escape(error or 'unknown error')}"


def build_caption(source: ItemSource, timestamp: datetime, summary: Optional[str], error: Optional[str]) -> str:
	"""Full HTML caption: header line followed by the analysis or the failure."""
	return f"{build_header(source, timestamp)}\n\n{build_body(summary, error)}"


def truncate_html_text(text: str, limit: int) -> str:
	if len(text) <= limit:
		return text
	return text[: limit - 1] + "…"


def build_keyboard(analysis_id: Optional[str], content: Optional[ContentAnalysis]) -> Optional[Dict[str, Any]]:
	"""Follow-up buttons keyed by analysis id; None when there is nothing to follow up on."""
	if not analysis_id:
		return None
	rows: List[List[Dict[str, str]]] = [
		[{"text": "🔬 Research Papers", "callback_data": f"arxiv_research_{analysis_id}"[:64]}],
		[{"text": "🧠 Deep Research", "callback_data": f"deep_research_{analysis_id}"[:64]}],
	]
	if content is not None and content.webpage_url:
		rows.append([{"text": "🌐 Webpage Content", "callback_data": f"full_webpage_{analysis_id}"[:64]}])
	return {"inline_keyboard": rows}
