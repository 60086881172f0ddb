from fastapi import APIRouter, Request

from controllers.screenshot_controller import health_payload, status_payload

router = APIRouter()


@router.get("/health")
async def health():
	"""Liveness probe with no side effects."""
	return health_payload()


@router.get("/status")
async def status(request: Request):
	return status_payload(request)
