"""Anthropic Messages API adapter for the ``ModelClient`` interface.

Talks to ``/v1/messages`` over httpx. Rate limits, 5xx responses, timeouts
and transport errors are retried with exponential backoff via tenacity;
authentication and other client errors fail immediately.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from taskcore.config.settings import TaskCoreSettings
from taskcore.exceptions_unified import (
    LLMAuthenticationError,
    LLMProviderError,
    LLMRateLimitError,
    LLMTimeoutError,
    MissingConfigurationError,
)
from taskcore.interfaces.model_client import (
    CompletionRequest,
    CompletionResponse,
    ContentBlock,
    StopReason,
    TextBlock,
    ToolUseBlock,
)

logger = logging.getLogger(__name__)

MESSAGES_PATH = "/v1/messages"

RETRYABLE_ERRORS = (LLMRateLimitError, LLMTimeoutError, LLMProviderError)


class AnthropicModelClient:
    """``ModelClient`` backed by the Anthropic Messages API."""

    def __init__(
        self,
        settings: TaskCoreSettings,
        http_client: Optional[httpx.AsyncClient] = None,
        retry_wait: Optional[wait_base] = None,
    ) -> None:
        if not settings.anthropic_api_key:
            raise MissingConfigurationError(
                "anthropic_api_key is not set (TASKCORE_ANTHROPIC_API_KEY)"
            )
        self.settings = settings
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=settings.anthropic_base_url,
            timeout=settings.request_timeout,
        )
        self._retry_wait = retry_wait or wait_exponential(multiplier=1, min=2, max=10)

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.settings.llm_max_retries),
            wait=self._retry_wait,
            retry=retry_if_exception(_is_transient),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._post(request)
        raise LLMProviderError("Anthropic request was not attempted")  # pragma: no cover

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    async def _post(self, request: CompletionRequest) -> CompletionResponse:
        try:
            response = await self._client.post(
                self._url(),
                headers=self._headers(),
                json=self.build_payload(request),
            )
        except httpx.TimeoutException as exc:
            raise LLMTimeoutError(f"Anthropic request timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise LLMProviderError(f"Anthropic transport error: {exc}") from exc

        status = response.status_code
        if status == 401:
            raise LLMAuthenticationError("Anthropic API rejected the API key", details={"status": status})
        if status == 429:
            raise LLMRateLimitError(
                "Anthropic API rate limit exceeded",
                details={"retry_after": response.headers.get("retry-after")},
            )
        if status >= 500:
            raise LLMProviderError(f"Anthropic API error: {status}", details={"status": status})
        if status != 200:
            raise LLMProviderError(
                f"Anthropic API error: {status} {_error_text(response)}",
                details={"status": status},
                is_recoverable=False,
            )
        return self.parse_response(response.json())

    def _url(self) -> str:
        return self.settings.anthropic_base_url.rstrip("/") + MESSAGES_PATH

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.settings.anthropic_api_key or "",
            "anthropic-version": self.settings.anthropic_version,
            "content-type": "application/json",
        }

    # ------------------------------------------------------------------
    # Wire format
    # ------------------------------------------------------------------

    def build_payload(self, request: CompletionRequest) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": request.model or self.settings.model,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "system": request.system_prompt,
            "messages": request.messages,
        }
        if request.tools:
            payload["tools"] = request.tools
        return payload

    @staticmethod
    def parse_response(data: Dict[str, Any]) -> CompletionResponse:
        content: List[ContentBlock] = []
        for block in data.get("content") or []:
            block_type = block.get("type")
            if block_type == "text":
                content.append(TextBlock(text=block.get("text", "")))
            elif block_type == "tool_use":
                content.append(
                    ToolUseBlock(id=block["id"], name=block["name"], input=dict(block.get("input") or {}))
                )
            else:
                logger.debug("Ignoring content block of type %s", block_type)

        raw_stop = data.get("stop_reason") or StopReason.END_TURN.value
        try:
            stop_reason = StopReason(raw_stop)
        except ValueError:
            logger.warning("Unknown stop_reason %r; treating as end_turn", raw_stop)
            stop_reason = StopReason.END_TURN

        usage = {k: int(v) for k, v in (data.get("usage") or {}).items() if isinstance(v, int)}
        return CompletionResponse(content=content, stop_reason=stop_reason, usage=usage)


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, RETRYABLE_ERRORS) and exc.is_recoverable


def _error_text(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return str(error.get("message", ""))
    return ""
