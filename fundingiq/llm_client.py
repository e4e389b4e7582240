"""AI gateway client (OpenAI-compatible chat completions) with error mapping."""
import json
from typing import AsyncIterator, Dict, List, Optional

import httpx
import structlog

from fundingiq import config
from fundingiq.errors import (
    ConfigurationError,
    StreamTruncatedError,
    UpstreamGenerationFailure,
    UpstreamQuotaExhausted,
    UpstreamRateLimited,
)

logger = structlog.get_logger()

DONE_SENTINEL = "[DONE]"


def _raise_for_status(status_code: int, body: str) -> None:
    """Map a non-2xx gateway response onto the upstream error taxonomy."""
    logger.error("gateway_http_error", status_code=status_code, body_preview=body[:200])

    if status_code == 429:
        raise UpstreamRateLimited()
    if status_code == 402:
        raise UpstreamQuotaExhausted()
    raise UpstreamGenerationFailure()


def _frame_payloads(frame: str) -> List[str]:
    """Return the `data:` payloads of one SSE frame."""
    payloads = []
    for line in frame.splitlines():
        if line.startswith("data:"):
            payloads.append(line[5:].strip())
    return payloads


class ChatStream:
    """An open streamed completion.

    Frames are relayed exactly as received. The stream must end with the
    `[DONE]` sentinel; anything else is reported as `StreamTruncatedError`.
    """

    def __init__(self, client: httpx.AsyncClient, response: httpx.Response, model: str):
        self._client = client
        self._response = response
        self.model = model
        self.completed = False

    async def iter_frames(self) -> AsyncIterator[str]:
        """Yield raw SSE frames, each terminated by a blank line."""
        lines: List[str] = []
        try:
            async for line in self._response.aiter_lines():
                if line:
                    lines.append(line)
                    if line.startswith("data:") and line[5:].strip() == DONE_SENTINEL:
                        self.completed = True
                        yield "\n".join(lines) + "\n\n"
                        return
                    continue

                if lines:
                    yield "\n".join(lines) + "\n\n"
                    lines = []

        except httpx.HTTPError as e:
            logger.error("gateway_stream_read_error", error=str(e), model=self.model)
            raise StreamTruncatedError() from e

        logger.error("gateway_stream_truncated", model=self.model)
        raise StreamTruncatedError()

    async def iter_text(self) -> AsyncIterator[str]:
        """Yield the `choices[0].delta.content` text of each frame."""
        async for frame in self.iter_frames():
            for payload in _frame_payloads(frame):
                if payload == DONE_SENTINEL:
                    return
                try:
                    data = json.loads(payload)
                    delta = data["choices"][0].get("delta", {}).get("content")
                except (json.JSONDecodeError, KeyError, IndexError, TypeError) as e:
                    logger.warning("gateway_stream_frame_skipped", error=str(e), payload_preview=payload[:100])
                    continue
                if delta:
                    yield delta

    async def aclose(self) -> None:
        await self._response.aclose()
        await self._client.aclose()

    async def __aenter__(self) -> "ChatStream":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


class GatewayClient:
    """Async client for the AI gateway's chat completions endpoint."""

    def __init__(
        self,
        base_url: str = None,
        api_key: Optional[str] = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the gateway client.

        Args:
            base_url: Gateway base URL (defaults to config.GATEWAY_BASE_URL)
            api_key: Bearer token (defaults to config.GATEWAY_API_KEY)
            timeout: Request timeout in seconds (defaults to config.GATEWAY_TIMEOUT)
            transport: Optional httpx transport, used to fake the gateway in tests
        """
        self.base_url = (base_url or config.GATEWAY_BASE_URL).rstrip("/")
        self.api_key = config.GATEWAY_API_KEY if api_key is None else api_key
        self.timeout = config.GATEWAY_TIMEOUT if timeout is None else timeout
        self.transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def ensure_configured(self) -> None:
        """Raise ConfigurationError when no API key is set."""
        if not self.is_configured:
            logger.error("gateway_api_key_missing")
            raise ConfigurationError()

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            transport=self.transport,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )

    def _payload(
        self,
        messages: List[Dict[str, str]],
        model: Optional[str],
        stream: bool,
        temperature: Optional[float],
        max_tokens: Optional[int],
    ) -> Dict:
        payload = {
            "model": model or config.CHAT_MODEL,
            "messages": messages,
            "stream": stream,
        }
        if temperature is not None:
            payload["temperature"] = temperature
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        return payload

    async def complete(
        self,
        messages: List[Dict[str, str]],
        model: str = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Request a single (non-streamed) completion.

        Args:
            messages: List of message dicts with 'role' and 'content'
            model: Model to use (defaults to config.CHAT_MODEL)
            temperature: Sampling temperature
            max_tokens: Completion token cap

        Returns:
            The content of `choices[0].message`

        Raises:
            ConfigurationError: If no API key is configured
            UpstreamRateLimited: On 429
            UpstreamQuotaExhausted: On 402
            UpstreamGenerationFailure: On any other failure
        """
        self.ensure_configured()
        payload = self._payload(messages, model, False, temperature, max_tokens)

        try:
            async with self._client() as client:
                logger.info(
                    "gateway_chat_request",
                    model=payload["model"],
                    message_count=len(messages),
                    stream=False,
                )

                response = await client.post(f"{self.base_url}/chat/completions", json=payload)
                if not response.is_success:
                    _raise_for_status(response.status_code, response.text)

                data = response.json()

        except httpx.HTTPError as e:
            logger.error("gateway_connection_error", error=str(e), base_url=self.base_url)
            raise UpstreamGenerationFailure() from e

        try:
            content = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            logger.error("gateway_malformed_response", error=str(e))
            raise UpstreamGenerationFailure() from e

        logger.info("gateway_chat_response", model=payload["model"], response_length=len(content))
        return content

    async def stream_chat(
        self,
        messages: List[Dict[str, str]],
        model: str = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> ChatStream:
        """Open a streamed completion.

        The status code is checked before returning, so rate-limit and quota
        errors surface here rather than mid-stream. The caller owns the
        returned stream and must close it.
        """
        self.ensure_configured()
        payload = self._payload(messages, model, True, temperature, max_tokens)

        client = self._client()
        try:
            logger.info(
                "gateway_chat_request",
                model=payload["model"],
                message_count=len(messages),
                stream=True,
            )
            request = client.build_request("POST", f"{self.base_url}/chat/completions", json=payload)
            response = await client.send(request, stream=True)

            if not response.is_success:
                body = (await response.aread()).decode("utf-8", errors="replace")
                await response.aclose()
                _raise_for_status(response.status_code, body)

        except httpx.HTTPError as e:
            await client.aclose()
            logger.error("gateway_connection_error", error=str(e), base_url=self.base_url)
            raise UpstreamGenerationFailure() from e
        except BaseException:
            await client.aclose()
            raise

        return ChatStream(client, response, payload["model"])


# Global client instance
gateway_client = GatewayClient()
