from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, ConfigDict

from controllers.screenshot_controller import error_response, submit_screenshot

router = APIRouter()


class MetadataPayload(BaseModel):
	model_config = ConfigDict(extra="allow")

	source: Optional[str] = None
	app: Optional[str] = None
	filename: Optional[str] = None
	location: Optional[str] = None
	auto_detected: Optional[bool] = None


class ScreenshotPayload(BaseModel):
	image: str
	metadata: Optional[MetadataPayload] = None


@router.post("/screenshot")
async def post_screenshot(request: Request, payload: ScreenshotPayload):
	"""Analyze a pushed screenshot and return the result once notification is done."""
	metadata = payload.metadata.model_dump(exclude_none=True) if payload.metadata else None
	try:
		return await submit_screenshot(request, payload.image, metadata)
	except HTTPException:
		raise
	except Exception as exc:
		return error_response(500, str(exc))
