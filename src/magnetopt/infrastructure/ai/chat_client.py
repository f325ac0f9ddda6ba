"""Minimal client for OpenAI-compatible ``/chat/completions`` endpoints.

Only JSON-object responses are supported: the reply content is decoded
and returned as a Python object. Every failure is raised as
:class:`AiCallError` carrying an :class:`ErrorKind`, so callers can decide
between retrying and falling back.
"""

from __future__ import annotations

import json
import re
from typing import Any

import httpx
import structlog

from magnetopt.domain.entities.errors import ErrorKind, MagnetOptError
from magnetopt.infrastructure.common.http_errors import (
    THROTTLE_STATUS_CODES,
    kind_for_exception,
    kind_for_status,
    parse_retry_after,
)
from magnetopt.infrastructure.common.rate_limiter import TokenBucket
from magnetopt.infrastructure.config.schema import AiEndpointConfig

log = structlog.get_logger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


class AiCallError(MagnetOptError):
    """A chat-completions call failed."""


def strip_code_fence(content: str) -> str:
    """Remove a surrounding Markdown code fence, if any."""
    text = content.strip()
    m = _FENCE_RE.match(text)
    return m.group(1) if m else text


class ChatCompletionClient:
    """POSTs chat requests and decodes JSON replies.

    The HTTP client is owned by the caller (composition root).
    """

    def __init__(
        self,
        config: AiEndpointConfig,
        *,
        http_client: httpx.AsyncClient,
        throttle: TokenBucket | None = None,
    ) -> None:
        self._config = config
        self._client = http_client
        self._throttle = throttle

    @property
    def model(self) -> str:
        return self._config.model

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    @property
    def endpoint(self) -> str:
        return f"{self._config.api_base}/chat/completions"

    async def complete_json(self, system: str, user: str) -> Any:
        """Send one system+user exchange and return the decoded JSON reply."""
        if not self.enabled:
            raise AiCallError("no API key configured", kind=ErrorKind.PERMANENT)

        if self._throttle is not None:
            await self._throttle.acquire()

        payload = {
            "model": self._config.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "temperature": 0.1,
            "response_format": {"type": "json_object"},
        }
        headers = {"Authorization": f"Bearer {self._config.api_key}"}

        try:
            resp = await self._client.post(
                self.endpoint,
                json=payload,
                headers=headers,
                timeout=self._config.timeout_seconds,
            )
        except httpx.TimeoutException as exc:
            if self._throttle is not None:
                self._throttle.record_timeout()
            raise AiCallError(
                f"timeout calling {self._config.model}", kind=ErrorKind.TRANSIENT
            ) from exc
        except httpx.HTTPError as exc:
            raise AiCallError(
                f"{type(exc).__name__} calling {self._config.model}",
                kind=kind_for_exception(exc),
            ) from exc

        if resp.status_code >= 400:
            if self._throttle is not None and resp.status_code in THROTTLE_STATUS_CODES:
                self._throttle.record_throttle()
            log.warning(
                "ai_call_http_error",
                model=self._config.model,
                status=resp.status_code,
            )
            raise AiCallError(
                f"HTTP {resp.status_code} from {self._config.model}",
                kind=kind_for_status(resp.status_code),
                retry_after=parse_retry_after(resp.headers),
            )

        if self._throttle is not None:
            self._throttle.record_success()
        return self._decode(resp)

    def _decode(self, resp: httpx.Response) -> Any:
        try:
            body = resp.json()
            content = body["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise AiCallError(
                "unexpected chat-completions response shape", kind=ErrorKind.MALFORMED
            ) from exc

        if not isinstance(content, str) or not content.strip():
            raise AiCallError("empty model reply", kind=ErrorKind.MALFORMED)

        try:
            return json.loads(strip_code_fence(content))
        except json.JSONDecodeError as exc:
            log.debug(
                "ai_reply_not_json", model=self._config.model, preview=content[:200]
            )
            raise AiCallError(
                f"model reply is not valid JSON: {exc.msg}", kind=ErrorKind.MALFORMED
            ) from exc
