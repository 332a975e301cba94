"""Asynchronous client for the generative model runtime.

:class:`BedrockRuntimeClient` is the networking boundary for every model
call in the pipeline. It posts one JSON payload to the runtime's
``/model/{id}/invoke`` endpoint and either returns the decoded body or
raises an error from :mod:`sitegen.exceptions` whose ``code`` carries the
runtime's own error name. It does no retrying of its own: retries, breakers
and fallback are layered on top by :mod:`sitegen.resilience`.

Examples
--------
>>> import aiohttp
>>> from sitegen.backends.config import GeneratorConfig
>>> async def main():
...     async with aiohttp.ClientSession() as session:
...         client = BedrockRuntimeClient(GeneratorConfig(), session)
...         return await client.invoke("amazon.titan-text-express-v1",
...                                    {"inputText": "Hi"}, timeout=30)
>>> # import asyncio; asyncio.run(main())
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Mapping
from urllib.parse import quote

import aiohttp

from sitegen.backends.adapters import TitanImageRequest, build_text_request, parse_response
from sitegen.exceptions import (
    AppError,
    BackendRequestError,
    BackendTimeoutError,
    ConfigurationError,
    ResponseValidationError,
    TransientBackendError,
)
from sitegen.models import FallbackLevel, GenerationOptions, GenerationResult

logger = logging.getLogger(__name__)

ERROR_TYPE_HEADER = "x-amzn-ErrorType"


def _status_error(
    status: int, error_type: str, body: str, backend_id: str
) -> AppError:
    context = {"status_code": status, "backend_id": backend_id, "error_body": body[:500]}
    message = f"{backend_id} returned HTTP {status}"
    if status == 429:
        return TransientBackendError(
            message, code=error_type or "ThrottlingException", context=context
        )
    if status == 408:
        return TransientBackendError(
            message, code=error_type or "ModelTimeoutException", context=context
        )
    if status >= 500:
        default = "ServiceUnavailable" if status in (503, 504) else "InternalServerError"
        return TransientBackendError(message, code=error_type or default, context=context)
    return BackendRequestError(
        message, code=error_type or f"HTTP_{status}", context=context
    )


class BedrockRuntimeClient:
    r"""Invoke models over HTTP with bearer-token authentication.

    Parameters
    ----------
    config : Any
        Configuration object (normally ``GeneratorConfig``) providing
        ``endpoint``, ``bearer_token``, ``request_timeout`` and ``models``.
    session : aiohttp.ClientSession
        Session used for every request; owned and closed by the caller.

    Notes
    -----
    Response status mapping:

    - ``200``: decoded JSON body; a non-JSON body is a
      ``ResponseValidationError``.
    - ``429``: ``TransientBackendError`` with code ``ThrottlingException``.
    - ``408``: ``TransientBackendError`` with code ``ModelTimeoutException``.
    - ``5xx``: ``TransientBackendError`` coded ``ServiceUnavailable`` or
      ``InternalServerError``, or with the ``x-amzn-ErrorType`` header value.
    - other ``4xx``: non-transient ``BackendRequestError``.
    - connection failures: ``TransientBackendError`` coded ``ConnectionError``.
    - socket timeout: ``BackendTimeoutError``.
    """

    def __init__(self, config: Any, session: aiohttp.ClientSession) -> None:
        self.config = config
        self.session = session

    def _url(self, backend_id: str) -> str:
        endpoint = getattr(self.config, "endpoint", "")
        if not endpoint:
            raise ConfigurationError("Model runtime endpoint not set")
        return f"{endpoint.rstrip('/')}/model/{quote(backend_id, safe='')}/invoke"

    async def invoke(
        self,
        backend_id: str,
        payload: Mapping[str, Any],
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Send one payload to ``backend_id`` and return the decoded body.

        Parameters
        ----------
        backend_id : str
            Model id, e.g. ``anthropic.claude-3-haiku-20240307-v1:0``.
        payload : Mapping[str, Any]
            Family-specific JSON payload.
        timeout : float | None, optional
            Total request timeout in seconds; defaults to
            ``config.request_timeout``.

        Raises
        ------
        TransientBackendError
            For throttling, 5xx, timeouts and connection failures.
        BackendRequestError
            For other 4xx responses.
        ResponseValidationError
            If a 200 response is not a JSON object.
        """
        url = self._url(backend_id)
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Authorization": f"Bearer {getattr(self.config, 'bearer_token', '') or ''}",
        }
        total = timeout if timeout is not None else getattr(self.config, "request_timeout", 300)
        try:
            async with self.session.post(
                url,
                json=dict(payload),
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=total),
            ) as response:
                status = response.status
                text = await response.text()
                if status == 200:
                    try:
                        data = json.loads(text)
                    except json.JSONDecodeError:
                        raise ResponseValidationError(
                            f"{backend_id} returned a non-JSON body",
                            context={"backend_id": backend_id, "body": text[:200]},
                        ) from None
                    if not isinstance(data, dict):
                        raise ResponseValidationError(
                            f"{backend_id} returned a non-object body",
                            context={"backend_id": backend_id},
                        )
                    return data
                error_type = response.headers.get(ERROR_TYPE_HEADER, "") or ""
                error_type = error_type.split(":", 1)[0].strip()
                logger.debug("%s answered HTTP %d (%s)", backend_id, status, error_type)
                raise _status_error(status, error_type, text, backend_id)
        except AppError:
            raise
        except asyncio.TimeoutError:
            raise BackendTimeoutError(
                f"{backend_id} timed out after {total}s",
                timeout=total,
                context={"backend_id": backend_id},
            ) from None
        except aiohttp.ClientError as exc:
            raise TransientBackendError(
                f"Connection to {backend_id} failed: {exc}",
                code="ConnectionError",
                context={"backend_id": backend_id},
            ) from exc

    async def generate_text(
        self,
        level: FallbackLevel,
        prompt: str,
        options: GenerationOptions | None = None,
    ) -> GenerationResult[str]:
        """Run one text generation against ``level.backend_id``."""
        request = build_text_request(level.backend_id, prompt, options)
        body = await self.invoke(level.backend_id, request.to_payload(), level.timeout)
        content, usage = parse_response(level.backend_id, body)
        return GenerationResult(content=content, usage=usage, backend_used=level.name)

    async def generate_image(
        self,
        prompt: str,
        options: Mapping[str, Any] | None = None,
        *,
        level: FallbackLevel | None = None,
    ) -> GenerationResult[str]:
        """Generate one image and return its base64-encoded PNG as content.

        Parameters
        ----------
        prompt : str
            Text prompt describing the image.
        options : Mapping[str, Any] | None, optional
            Overrides for :class:`TitanImageRequest` fields (``width``,
            ``height``, ``negative_prompt``, ``cfg_scale``, ``seed``).
        level : FallbackLevel | None, optional
            Level to invoke; defaults to the configured image model.
        """
        backend_id = level.backend_id if level else self.config.models["image"]
        timeout = level.timeout if level else None
        request = TitanImageRequest(prompt=prompt, **dict(options or {}))
        body = await self.invoke(backend_id, request.to_payload(), timeout)
        content, usage = parse_response(backend_id, body)
        return GenerationResult(
            content=content, usage=usage, backend_used=level.name if level else backend_id
        )
