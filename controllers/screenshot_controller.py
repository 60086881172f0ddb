"""Turn pipeline results into HTTP responses for the screenshot endpoint."""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from models.processed_item import ItemSource, ItemStatus, ProcessedItem, ScreenshotMetadata
from utils.errors import DecodeError, ValidationError


def _now_iso() -> str:
	return datetime.now(timezone.utc).isoformat()


def error_body(message: str) -> Dict[str, Any]:
	return {"success": False, "error": message, "timestamp": _now_iso()}


def error_response(status_code: int, message: str) -> JSONResponse:
	return JSONResponse(status_code=status_code, content=error_body(message))


def build_processing_response(item: ProcessedItem) -> Dict[str, Any]:
	"""ProcessingResponse shape shared by `/screenshot` and the shell's direct upload."""
	completed = item.status is ItemStatus.COMPLETED
	response: Dict[str, Any] = {
		"success": completed,
		"id": item.id,
		"status": item.status.value,
		"timestamp": item.timestamp.isoformat(),
		"source": item.source.value,
		"size": item.byte_size,
		"type": item.mime_type,
	}
	if completed:
		response["summary"] = item.analysis_summary
		response["analysis_id"] = item.analysis_id
		response["follow_up_available"] = bool(item.analysis_id)
		response["message"] = "Screenshot analyzed"
	else:
		response["error"] = item.error_detail
		response["error_kind"] = item.error_kind.value if item.error_kind else None
	return response


async def submit_screenshot(
	request: Request,
	image: str,
	metadata: Optional[Dict[str, Any]] = None,
) -> Any:
	"""Run one pushed screenshot through the pipeline.

	Returns a dict (200) when the pipeline produced a result, including
	provider failures, or a JSONResponse with 400/413/415/422 when the
	payload was rejected.
	"""
	pipeline = request.app.state.pipeline
	meta = ScreenshotMetadata.from_dict(metadata)
	source = ItemSource.from_metadata(meta.source, ItemSource.IOS_PUSH)
	try:
		item = await pipeline.submit_base64(image, source, meta)
	except (ValidationError, DecodeError) as exc:
		return error_response(exc.status_code, str(exc))
	return build_processing_response(item)


def health_payload() -> Dict[str, Any]:
	return {"status": "healthy", "server": "screenshot-relay", "timestamp": _now_iso()}


def status_payload(request: Request) -> Dict[str, Any]:
	session = request.app.state.session
	payload = session.info().to_dict()
	payload.update(session.pipeline.stats())
	return payload
