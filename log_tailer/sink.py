"""Sinks: destinations that accept a batch of records for a named table."""

import logging
from abc import ABC, abstractmethod

import httpx

from log_tailer.errors import TransientSinkError

logger = logging.getLogger(__name__)


class Sink(ABC):
    @abstractmethod
    async def insert(self, table: str, records: list[dict]) -> None:
        """Insert records into table. Raises TransientSinkError on failure."""

    async def aclose(self) -> None:
        pass


class PostgrestSink(Sink):
    """Inserts rows through a PostgREST endpoint (e.g. Supabase ``/rest/v1``).

    The token is sent as a bearer credential so row-level security applies to
    the caller's identity; the API key identifies the project.
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        token: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=url.rstrip("/") + "/rest/v1",
            headers={
                "apikey": api_key,
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
                "Prefer": "return=minimal",
            },
            timeout=timeout,
            transport=transport,
        )

    async def insert(self, table: str, records: list[dict]) -> None:
        try:
            resp = await self._client.post(f"/{table}", json=records)
        except httpx.HTTPError as e:
            raise TransientSinkError(f"{type(e).__name__}: {e}") from e

        if not 200 <= resp.status_code < 300:
            raise TransientSinkError(f"HTTP {resp.status_code}: {resp.text[:200]}")
        logger.debug("Inserted %d record(s) into %s (HTTP %d)", len(records), table, resp.status_code)

    async def aclose(self) -> None:
        await self._client.aclose()
