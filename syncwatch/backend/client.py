from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from syncwatch.backend.payloads import DatasetSyncPayload, Pagination, TriggerResponse
from syncwatch.core.config import Settings

logger = logging.getLogger(__name__)


class DatasetApiError(RuntimeError):
    pass


class DatasetNotFoundError(DatasetApiError):
    pass


class DatasetApiClient:
    def __init__(self, settings: Settings, *, http_client: httpx.AsyncClient | None = None):
        self._settings = settings
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=settings.backend_base_url,
            timeout=settings.backend_timeout_seconds,
        )
        self._client.headers.update(self._default_headers())

    def _default_headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._settings.backend_api_token:
            headers["Authorization"] = f"Bearer {self._settings.backend_api_token}"
        return headers

    async def __aenter__(self) -> "DatasetApiClient":
        return self

    async def __aexit__(self, *_exc: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise DatasetApiError(f"{method} {path} failed: {exc.__class__.__name__}: {exc}") from exc

    def _read_envelope(self, response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError as exc:
            raise DatasetApiError(f"Invalid JSON from {response.request.url.path} (HTTP {response.status_code})") from exc
        if not isinstance(body, dict):
            raise DatasetApiError(f"Unexpected response shape from {response.request.url.path}")
        return body

    def _error_detail(self, body: dict[str, Any]) -> str | None:
        detail = body.get("error") or body.get("message")
        return str(detail) if detail else None

    async def list_datasets(self) -> list[DatasetSyncPayload]:
        items: list[DatasetSyncPayload] = []
        page = 1
        while True:
            response = await self._request(
                "GET",
                "/api/datasets",
                params={"page": page, "pageSize": self._settings.backend_page_size},
            )
            if response.status_code >= 400:
                raise DatasetApiError(f"Listing datasets failed with HTTP {response.status_code}")
            body = self._read_envelope(response)
            if not body.get("success", False):
                raise DatasetApiError(f"Listing datasets failed: {self._error_detail(body) or 'unknown error'}")
            try:
                items.extend(DatasetSyncPayload.model_validate(row) for row in body.get("data") or [])
                pagination = Pagination.model_validate(body.get("pagination") or {})
            except ValidationError as exc:
                raise DatasetApiError(f"Invalid dataset list payload: {exc}") from exc

            if page >= pagination.total_pages:
                break
            if page >= self._settings.backend_max_pages:
                logger.warning(
                    "Dataset listing truncated at %s pages of %s",
                    page,
                    pagination.total_pages,
                )
                break
            page += 1
        return items

    async def get_sync_status(self, dataset_id: str) -> DatasetSyncPayload:
        path = f"/api/datasets/{dataset_id}/sync-status"
        response = await self._request("GET", path)
        if response.status_code == 404:
            raise DatasetNotFoundError(f"Dataset not found: {dataset_id}")
        if response.status_code >= 400:
            raise DatasetApiError(f"Sync status for {dataset_id} failed with HTTP {response.status_code}")
        body = self._read_envelope(response)
        if not body.get("success", False):
            raise DatasetApiError(f"Sync status for {dataset_id} failed: {self._error_detail(body) or 'unknown error'}")
        data = body.get("data") or {}
        if isinstance(data, dict):
            data.setdefault("dataSetId", dataset_id)
        try:
            return DatasetSyncPayload.model_validate(data)
        except ValidationError as exc:
            raise DatasetApiError(f"Invalid sync status payload for {dataset_id}: {exc}") from exc

    async def trigger_sync(self, dataset_id: str) -> TriggerResponse:
        path = f"/api/datasets/{dataset_id}/sync"
        response = await self._request("POST", path)
        if response.status_code >= 500:
            raise DatasetApiError(f"Triggering sync for {dataset_id} failed with HTTP {response.status_code}")
        try:
            body = self._read_envelope(response)
        except DatasetApiError:
            if response.is_success:
                return TriggerResponse(accepted=True)
            raise
        if response.status_code == 404:
            return TriggerResponse(accepted=False, message=self._error_detail(body) or f"Dataset not found: {dataset_id}")
        if response.is_success and body.get("success", True):
            return TriggerResponse(accepted=True, message=body.get("message"))
        return TriggerResponse(accepted=False, message=self._error_detail(body) or f"HTTP {response.status_code}")
