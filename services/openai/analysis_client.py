"""Description: Screenshot summarization service using OpenAI's Responses API."""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import openai
from openai import AsyncOpenAI

from models.processed_item import ContentAnalysis, ItemSource
from services.image_codec import DecodedImage, ImageCodec
from services.openai.media_inputs import build_inputs
from services.openai.response_parser import (
    extract_output_text,
    extract_usage,
    parse_function_call,
    to_content_analysis,
)
from services.openai.vision_prompts import build_system_prompt, build_user_prompt
from services.openai.vision_schema import FUNCTION_DEFINITION, FUNCTION_NAME
from utils.errors import (
    AnalysisError,
    PayloadTooLarge,
    ProviderAuthError,
    ProviderRateLimited,
    ProviderTimeout,
    ProviderUnavailable,
)
from utils.retry import RetryPolicy, retry_async

LOGGER = logging.getLogger(__name__)
DEFAULT_MODEL = "gpt-4.1-mini"
DEFAULT_TIMEOUT_SECONDS = 30.0
MAX_SUMMARY_CHARS = 1200
# Provider-side request limit for inline base64 images.
MAX_PROVIDER_PAYLOAD_BYTES = 20 * 1024 * 1024


@dataclass(frozen=True)
class AnalysisContext:
    """Short textual context sent along with the image."""

    source: ItemSource
    filename: Optional[str] = None
    app: Optional[str] = None


@dataclass
class AnalysisResult:
    """Successful analysis of one screenshot."""

    summary: str
    analysis_id: str
    content_analysis: ContentAnalysis = field(default_factory=ContentAnalysis)
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    latency: float = 0.0


def truncate_summary(text: str, limit: int = MAX_SUMMARY_CHARS) -> str:
    """Bound the summary length, cutting at a word boundary when possible."""
    text = (text or "").strip()
    if len(text) <= limit:
        return text
    cut = text[: limit - 1]
    space = cut.rfind(" ")
    if space > limit // 2:
        cut = cut[:space]
    return cut.rstrip() + "…"


def map_provider_error(exc: BaseException) -> AnalysisError:
    """Translate an OpenAI SDK (or asyncio) exception into a typed AnalysisError."""
    if isinstance(exc, AnalysisError):
        return exc
    if isinstance(exc, (asyncio.TimeoutError, openai.APITimeoutError)):
        return ProviderTimeout("AI provider request timed out.")
    if isinstance(exc, openai.APIConnectionError):
        return ProviderUnavailable(f"AI provider unreachable: {exc}")
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return ProviderAuthError("AI provider rejected the API key.")
    if isinstance(exc, openai.RateLimitError):
        return ProviderRateLimited("AI provider rate limit reached.")
    if isinstance(exc, openai.APIStatusError):
        if exc.status_code == 413:
            return PayloadTooLarge("Image is too large for the AI provider.")
        if exc.status_code >= 500:
            return ProviderUnavailable(f"AI provider error ({exc.status_code}).")
        return AnalysisError(f"AI provider rejected the request ({exc.status_code}).")
    return ProviderUnavailable(f"AI provider call failed: {exc}")


class AnalysisClient:
    """Summarize screenshots with a vision model, with a timeout and one retry."""

    def __init__(
        self,
        client: AsyncOpenAI,
        *,
        model: Optional[str] = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        retry_policy: Optional[RetryPolicy] = None,
        codec: Optional[ImageCodec] = None,
    ) -> None:
        """Initialize the client with an OpenAI async client."""
        if client is None:
            raise ValueError("OpenAI client must be provided.")
        self.client = client
        self.model = model or DEFAULT_MODEL
        self.timeout_seconds = timeout_seconds
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=2, backoff_seconds=1.0)
        self.codec = codec or ImageCodec()
        self.system_prompt = build_system_prompt()

    @classmethod
    def from_api_key(cls, api_key: str, *, model: Optional[str] = None,
                     timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS) -> "AnalysisClient":
        """Create a client with SDK retries disabled; retries happen in `analyze`."""
        openai_client = AsyncOpenAI(api_key=api_key, timeout=timeout_seconds, max_retries=0)
        return cls(openai_client, model=model, timeout_seconds=timeout_seconds)

    async def analyze(self, image: DecodedImage, context: AnalysisContext) -> AnalysisResult:
        """Return a bounded summary for `image` or raise a typed AnalysisError."""
        image_b64, mime_type = await asyncio.to_thread(self.codec.encode_for_provider, image)
        if len(image_b64) > MAX_PROVIDER_PAYLOAD_BYTES:
            raise PayloadTooLarge("Encoded image exceeds the AI provider limit.")

        user_prompt = build_user_prompt(
            context.source is ItemSource.DESKTOP_AUTO,
            filename=context.filename,
            app=context.app,
        )
        inputs = build_inputs(self.system_prompt, user_prompt, image_b64=image_b64, mime_type=mime_type)

        start_time = time.time()
        response = await retry_async(
            lambda: self._create_response(inputs),
            self.retry_policy,
            description="AI analysis",
        )
        result = self._parse_response(response)
        result.latency = time.time() - start_time
        usage = extract_usage(response)
        result.input_tokens = usage["input_tokens"]
        result.output_tokens = usage["output_tokens"]
        return result

    async def close(self) -> None:
        """Close the underlying HTTP client if the SDK exposes one."""
        closer = getattr(self.client, "close", None)
        if closer is None:
            return
        result = closer()
        if asyncio.iscoroutine(result):
            await result

    async def _create_response(self, inputs: List[Dict[str, Any]]) -> Any:
        """Send one multimodal request, mapping failures to typed errors."""
        try:
            return await asyncio.wait_for(
                self.client.responses.create(
                    model=self.model,
                    input=inputs,
                    tools=[FUNCTION_DEFINITION],
                    tool_choice={"type": "function", "name": FUNCTION_NAME},
                ),
                timeout=self.timeout_seconds,
            )
        except Exception as exc:
            mapped = map_provider_error(exc)
            LOGGER.error("Error during OpenAI Responses API call (%s): %s", mapped.kind.value, exc)
            raise mapped from exc

    def _parse_response(self, response: Any) -> AnalysisResult:
        """Parse the summary output from the model."""
        analysis_id = getattr(response, "id", None) or uuid.uuid4().hex
        try:
            args = parse_function_call(response, tool_name=FUNCTION_NAME)
        except (RuntimeError, ValueError) as exc:
            fallback = extract_output_text(response)
            if not fallback:
                LOGGER.error("Error parsing OpenAI response: %s", exc)
                LOGGER.error("Full response object: %r", response)
                raise AnalysisError("AI provider returned an unreadable response.") from exc
            return AnalysisResult(summary=truncate_summary(fallback), analysis_id=str(analysis_id))

        summary = truncate_summary(str(args.get("summary") or ""))
        if not summary:
            LOGGER.error("Empty summary received from OpenAI.")
            raise AnalysisError("AI provider returned an empty summary.")
        return AnalysisResult(
            summary=summary,
            analysis_id=str(analysis_id),
            content_analysis=to_content_analysis(args),
        )

# end of AnalysisClient
