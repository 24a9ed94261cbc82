"""
Remote trip store client.

The authoritative copy of a user's trips lives in a PostgREST (Supabase)
``trips`` table. Records are matched by ``(user_id, start_time, end_time)``,
never hard-deleted (``is_deleted``/``deleted_at`` mark a soft delete), and carry
an ``updated_at`` used for last-write-wins.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import aiohttp

from config import (
    REMOTE_STORE_ACCESS_TOKEN,
    REMOTE_STORE_API_KEY,
    REMOTE_STORE_URL,
)
from core.exceptions import ExternalServiceError
from core.http.circuit_breaker import remote_store_breaker, with_circuit_breaker
from core.http.request import request_json
from core.http.session import get_session
from date_utils import get_current_utc_time

logger = logging.getLogger(__name__)

SERVICE_NAME = "Remote trip store"


class RemoteTripStore(Protocol):
    async def find_by_time_window(
        self,
        user_id: str,
        start_time: int,
        end_time: int,
    ) -> dict[str, Any] | None: ...

    async def insert(self, record: dict[str, Any]) -> dict[str, Any]: ...

    async def update(self, remote_id: str, record: dict[str, Any]) -> dict[str, Any]: ...

    async def soft_delete(self, remote_id: str) -> None: ...

    async def list_active(self, user_id: str) -> list[dict[str, Any]]: ...


class PostgrestRemoteTripStore:
    """:class:`RemoteTripStore` over the PostgREST HTTP interface."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        api_key: str | None = None,
        access_token: str | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._base_url = (base_url if base_url is not None else REMOTE_STORE_URL).rstrip("/")
        self._api_key = api_key if api_key is not None else REMOTE_STORE_API_KEY
        self._access_token = (
            access_token if access_token is not None else REMOTE_STORE_ACCESS_TOKEN
        )
        self._session = session

    @property
    def configured(self) -> bool:
        return bool(self._base_url)

    def _trips_url(self) -> str:
        if not self.configured:
            msg = "Remote trip store URL is not configured"
            raise ExternalServiceError(msg)
        return f"{self._base_url}/rest/v1/trips"

    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Prefer": "return=representation",
        }
        if self._api_key:
            headers["apikey"] = self._api_key
        token = self._access_token or self._api_key
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is not None:
            return self._session
        return await get_session()

    async def _request(
        self,
        method: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any | None = None,
        expected_status: int | tuple[int, ...] = 200,
    ) -> Any:
        session = await self._get_session()
        return await request_json(
            method,
            self._trips_url(),
            session=session,
            params=params,
            json=json,
            headers=self._headers(),
            expected_status=expected_status,
            service_name=SERVICE_NAME,
        )

    @staticmethod
    def _first(data: Any) -> dict[str, Any] | None:
        if isinstance(data, list):
            return data[0] if data else None
        if isinstance(data, dict):
            return data
        return None

    @with_circuit_breaker(remote_store_breaker)
    async def find_by_time_window(
        self,
        user_id: str,
        start_time: int,
        end_time: int,
    ) -> dict[str, Any] | None:
        data = await self._request(
            "GET",
            params={
                "select": "*",
                "user_id": f"eq.{user_id}",
                "start_time": f"eq.{start_time}",
                "end_time": f"eq.{end_time}",
                "limit": "1",
            },
        )
        return self._first(data)

    @with_circuit_breaker(remote_store_breaker)
    async def insert(self, record: dict[str, Any]) -> dict[str, Any]:
        data = await self._request(
            "POST",
            json=[record],
            expected_status=(200, 201),
        )
        return self._first(data) or record

    @with_circuit_breaker(remote_store_breaker)
    async def update(self, remote_id: str, record: dict[str, Any]) -> dict[str, Any]:
        data = await self._request(
            "PATCH",
            params={"id": f"eq.{remote_id}"},
            json=record,
            expected_status=(200, 204),
        )
        return self._first(data) or {**record, "id": remote_id}

    @with_circuit_breaker(remote_store_breaker)
    async def soft_delete(self, remote_id: str) -> None:
        await self._request(
            "PATCH",
            params={"id": f"eq.{remote_id}"},
            json={
                "is_deleted": True,
                "deleted_at": get_current_utc_time().isoformat(),
            },
            expected_status=(200, 204),
        )
        logger.info("Soft-deleted remote trip %s", remote_id)

    @with_circuit_breaker(remote_store_breaker)
    async def list_active(self, user_id: str) -> list[dict[str, Any]]:
        data = await self._request(
            "GET",
            params={
                "select": "*",
                "user_id": f"eq.{user_id}",
                "is_deleted": "eq.false",
                "order": "start_time.desc",
            },
        )
        if not isinstance(data, list):
            return []
        return [row for row in data if isinstance(row, dict)]


__all__ = ["PostgrestRemoteTripStore", "RemoteTripStore"]
