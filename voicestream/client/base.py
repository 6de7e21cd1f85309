"""Shared aiohttp plumbing for the transcription service clients."""

import asyncio
import logging
from typing import Any, Optional, Type, TypeVar, Union

import aiohttp
from pydantic import ValidationError

from .responses import RemoteFailure, ServiceResponse

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0

R = TypeVar("R", bound=ServiceResponse)


class TransportError(Exception):
    """The request never produced a response (connection refused, timeout, ...).

    Categories: "connection", "timeout", "network".
    """

    def __init__(self, message: str, category: str = "network"):
        self.message = message
        self.category = category
        super().__init__(message)


class ServiceClient:
    """Thin async wrapper around aiohttp for calling the transcription service.

    Each call returns either the parsed success model or a RemoteFailure, and
    raises TransportError when no response arrived. Subclasses translate both
    into the VoiceStream error taxonomy.
    """

    def __init__(self, base_url: str = "http://localhost:8080",
                 timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
                 session: Optional[aiohttp.ClientSession] = None):
        """Initialize the client.

        Args:
            base_url: Base URL of the transcription service
            timeout_seconds: Total timeout applied to every request
            session: Shared aiohttp session; one is created lazily when omitted
        """
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the underlying session if this client created it."""
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _request(self, method: str, path: str, model: Type[R],
                       timeout_seconds: Optional[float] = None,
                       **kwargs: Any) -> Union[R, RemoteFailure]:
        """Execute an HTTP request and parse the JSON body.

        Args:
            method: HTTP method name ("GET", "POST", "DELETE")
            path: API endpoint path (e.g. "/api/stream/start")
            model: Success model to parse the body into
            timeout_seconds: Per-call timeout overriding the client default
            **kwargs: Passed through to aiohttp (json, data, ...)

        Returns:
            The parsed model, or RemoteFailure for error statuses, bodies with
            ``success: false`` and bodies that do not match ``model``

        Raises:
            TransportError: On connection errors and timeouts
        """
        url = f"{self.base_url}{path}"
        if timeout_seconds is not None:
            kwargs["timeout"] = aiohttp.ClientTimeout(total=timeout_seconds)

        try:
            async with self._get_session().request(method, url, **kwargs) as response:
                status = response.status
                try:
                    body = await response.json(content_type=None)
                except ValueError:
                    body = None
                    text = await response.text()
                    logger.debug(f"{method} {path} returned non-JSON body: {text[:200]!r}")
        except asyncio.TimeoutError:
            raise TransportError(f"{method} {path} timed out", category="timeout") from None
        except aiohttp.ClientConnectionError as e:
            raise TransportError(f"Cannot reach transcription service at {self.base_url}: {e}",
                                 category="connection") from e
        except aiohttp.ClientError as e:
            raise TransportError(f"{method} {path} failed: {e}", category="network") from e

        if not isinstance(body, dict):
            return RemoteFailure(reason=f"HTTP {status}: response is not a JSON object",
                                 status=status, category="protocol")

        if status >= 400 or body.get("success") is False:
            reason = body.get("error") or f"HTTP {status}"
            return RemoteFailure(reason=str(reason), status=status,
                                 category="http" if status >= 400 else "rejected")

        try:
            return model.model_validate(body)
        except ValidationError as e:
            logger.debug(f"{method} {path} body did not match {model.__name__}: {e}")
            return RemoteFailure(reason=f"Unexpected response shape from {path}",
                                 status=status, category="protocol")
