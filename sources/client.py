"""
================================================================================
Moku Explore - Suwayomi GraphQL Client
================================================================================
Async query transport for the Suwayomi server.

Every query goes through SuwayomiClient.execute(), which:
  - POSTs {query, variables} to /api/graphql with httpx
  - Retries connection failures with exponential backoff (the server may
    still be booting on first load)
  - Raises a typed QueryError on HTTP or GraphQL failures
  - Honors a cancellation token: a fired token rejects with QueryCancelled

CANCELLATION TOKENS:
  Any object with a `cancelled` property and an awaitable `wait()` that
  returns once the token fires (moku_explore.cancellation.CancellationScope).
================================================================================
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_SERVER_URL = "http://127.0.0.1:4567"
GRAPHQL_PATH = "/api/graphql"


# =============================================================================
# ERRORS
# =============================================================================

class QueryError(Exception):
    """Base error for a failed GraphQL query."""
    def __init__(self, message: str, operation: Optional[str] = None):
        self.operation = operation
        prefix = f"[{operation}] " if operation else ""
        super().__init__(f"{prefix}{message}")


class QueryCancelled(QueryError):
    """Raised when the caller's cancellation token fired."""
    def __init__(self, operation: Optional[str] = None):
        super().__init__("cancelled", operation)


class QueryTransportError(QueryError):
    """Connection failure after retries, or a non-2xx response."""
    def __init__(self, message: str, operation: Optional[str] = None, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message, operation)


class QueryResponseError(QueryError):
    """GraphQL errors array or a malformed payload."""


# =============================================================================
# CLIENT
# =============================================================================

class SuwayomiClient:
    """
    Async GraphQL client.

    Usage:
        client = SuwayomiClient("http://127.0.0.1:4567")
        data = await client.execute(GET_SOURCES, token=scope)
        await client.close()
    """

    user_agent: str = "MokuExplore/1.0"

    def __init__(
        self,
        base_url: str = DEFAULT_SERVER_URL,
        retries: int = 8,
        retry_delay: float = 0.5,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            base_url: Suwayomi server root
            retries: Attempts for connection failures
            retry_delay: First backoff delay in seconds (grows x1.5)
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests use MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.retries = max(1, retries)
        self.retry_delay = retry_delay
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}{GRAPHQL_PATH}"

    def thumb_url(self, path: str) -> str:
        """Resolve a thumbnail path returned by the server."""
        if not path or path.startswith(("http://", "https://")):
            return path or ""
        return f"{self.base_url}{path}"

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                headers={
                    "User-Agent": self.user_agent,
                    "Accept": "application/json",
                    "Content-Type": "application/json",
                },
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _post_with_retry(self, payload: Dict[str, Any], operation: Optional[str]) -> httpx.Response:
        """POST the payload, retrying only connection-level failures."""
        client = await self._get_client()

        for attempt in range(self.retries):
            try:
                return await client.post(self.endpoint, json=payload)
            except httpx.RequestError as e:
                if attempt == self.retries - 1:
                    raise QueryTransportError(f"Suwayomi unreachable: {e}", operation) from e
                wait_time = self.retry_delay * (1.5 ** attempt)
                logger.debug(f"{operation or 'query'}: request error ({e}), retry in {wait_time:.2f}s")
                await asyncio.sleep(wait_time)

        raise QueryTransportError("Max retries exceeded", operation)

    async def _request(self, query: str, variables: Optional[Dict[str, Any]], operation: Optional[str]) -> Dict[str, Any]:
        response = await self._post_with_retry({"query": query, "variables": variables or {}}, operation)

        if response.status_code < 200 or response.status_code >= 300:
            raise QueryTransportError(
                f"Suwayomi HTTP {response.status_code}", operation, status_code=response.status_code
            )

        try:
            body = response.json()
        except ValueError as e:
            raise QueryResponseError(f"Invalid JSON response: {e}", operation) from e

        errors = body.get("errors") if isinstance(body, dict) else None
        if errors:
            first = errors[0]
            message = first.get("message") if isinstance(first, dict) else str(first)
            raise QueryResponseError(message or "GraphQL error", operation)

        data = body.get("data") if isinstance(body, dict) else None
        if data is None:
            raise QueryResponseError("Response has no data", operation)
        return data

    async def execute(
        self,
        query: str,
        variables: Optional[Dict[str, Any]] = None,
        token: Any = None,
        operation: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Execute a GraphQL document.

        Args:
            query: GraphQL document
            variables: Query variables
            token: Optional cancellation token
            operation: Name used in errors and logs

        Returns:
            The response `data` mapping

        Raises:
            QueryCancelled: token fired before the response arrived
            QueryTransportError / QueryResponseError: the query failed
        """
        if token is None:
            return await self._request(query, variables, operation)

        if token.cancelled:
            raise QueryCancelled(operation)

        request_task = asyncio.ensure_future(self._request(query, variables, operation))
        cancel_task = asyncio.ensure_future(token.wait())
        try:
            await asyncio.wait({request_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            request_task.cancel()
            raise
        finally:
            cancel_task.cancel()

        if request_task.done():
            return request_task.result()

        # Token fired first: abort the request best-effort
        request_task.cancel()
        try:
            await request_task
        except asyncio.CancelledError:
            pass
        except QueryError as e:
            logger.debug(f"{operation or 'query'}: error after cancellation ignored: {e}")
        raise QueryCancelled(operation)
