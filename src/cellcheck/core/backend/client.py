from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

import httpx

from cellcheck.core.config import load_settings
from cellcheck.core.data.schemas import DataRow
from cellcheck.core.http.client import build_http_client, build_timeout, error_message, request_with_retry
from cellcheck.core.http.errors import CellcheckHTTPNetworkError, CellcheckHTTPStatusError, RateLimitedError

from .schemas import (
    BatchCreated,
    BatchStatus,
    SessionData,
    SessionInfo,
    SessionTask,
    TaskCreated,
    TaskRequest,
    TaskStatusResponse,
)

logger = logging.getLogger("cellcheck.backend")


class SSEProgressStream:
    """Server-sent-event reader for one task's progress channel.

    Yields each ``data:`` frame decoded as a JSON object. Frames that do not
    decode to an object are logged and skipped.
    """

    def __init__(self, client: httpx.AsyncClient, url: str) -> None:
        self._client = client
        self._url = url
        self._response: httpx.Response | None = None
        self.closed = False

    def __aiter__(self) -> AsyncIterator[dict[str, Any]]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[dict[str, Any]]:
        request = self._client.build_request(
            "GET",
            self._url,
            headers={"Accept": "text/event-stream", "Cache-Control": "no-cache"},
            # Reads block for as long as the server keeps the stream open.
            timeout=httpx.Timeout(None, connect=build_timeout().connect),
        )
        try:
            self._response = await self._client.send(request, stream=True)
        except httpx.HTTPError as exc:
            raise CellcheckHTTPNetworkError(f"Stream connection failed for {self._url}: {exc.__class__.__name__}") from exc
        try:
            if self._response.status_code >= 400:
                await self._response.aread()
                raise CellcheckHTTPStatusError(
                    f"HTTP {self._response.status_code}: {error_message(self._response)}",
                    status_code=self._response.status_code,
                )
            data_lines: list[str] = []
            async for line in self._response.aiter_lines():
                if self.closed:
                    break
                if not line:
                    message = self._decode(data_lines)
                    data_lines = []
                    if message is not None:
                        yield message
                    continue
                if line.startswith(":"):
                    continue
                field, _, value = line.partition(":")
                if field == "data":
                    data_lines.append(value[1:] if value.startswith(" ") else value)
            message = self._decode(data_lines)
            if message is not None and not self.closed:
                yield message
        finally:
            await self.aclose()

    @staticmethod
    def _decode(data_lines: list[str]) -> dict[str, Any] | None:
        if not data_lines:
            return None
        raw = "\n".join(data_lines)
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("stream_parse_failed", extra={"extra_fields": {"frame": raw[:200]}})
            return None
        if not isinstance(payload, dict):
            logger.warning("stream_parse_failed", extra={"extra_fields": {"frame": raw[:200]}})
            return None
        return payload

    async def aclose(self) -> None:
        self.closed = True
        if self._response is not None:
            await self._response.aclose()


class HTTPAnalysisBackend:
    def __init__(self, base_url: str | None = None, *, client: httpx.AsyncClient | None = None) -> None:
        self.base_url = (base_url or load_settings().api_url).rstrip("/")
        self.client = client if client is not None else build_http_client(self.base_url)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def create_task(self, request: TaskRequest) -> TaskCreated:
        try:
            response = await request_with_retry(
                self.client,
                "POST",
                "/api/tasks/execute",
                json=request.to_wire(),
                retry_rate_limited=False,
            )
        except CellcheckHTTPStatusError as exc:
            if exc.is_rate_limited:
                raise RateLimitedError(str(exc)) from exc
            raise
        created = TaskCreated.model_validate(response.json())
        logger.info("task_created", extra={"extra_fields": {"task_id": created.task_id}})
        return created

    async def get_task_status(self, task_id: str) -> TaskStatusResponse:
        response = await request_with_retry(self.client, "GET", f"/api/tasks/{task_id}")
        return TaskStatusResponse.model_validate(response.json())

    def open_progress_stream(self, task_id: str) -> SSEProgressStream:
        return SSEProgressStream(self.client, f"/api/tasks/{task_id}/stream")

    async def create_batch(self, tasks: list[TaskRequest], session_id: str | None = None) -> BatchCreated:
        payload: dict[str, Any] = {"tasks": [task.to_wire() for task in tasks]}
        if session_id:
            payload["sessionId"] = session_id
        response = await request_with_retry(self.client, "POST", "/api/tasks/batch", json=payload)
        return BatchCreated.model_validate(response.json())

    async def get_batch_status(self, batch_id: str) -> BatchStatus:
        response = await request_with_retry(self.client, "GET", f"/api/batches/{batch_id}")
        return BatchStatus.model_validate(response.json())

    async def list_sessions(self) -> list[SessionInfo]:
        response = await request_with_retry(self.client, "GET", "/api/sessions")
        payload = response.json()
        return [SessionInfo.model_validate(item) for item in payload.get("sessions", [])]

    async def create_session(
        self,
        name: str,
        rows: list[DataRow],
        column_names: list[str],
        *,
        description: str | None = None,
        file_name: str | None = None,
        file_type: str | None = None,
    ) -> SessionInfo:
        body: dict[str, Any] = {"name": name, "data": rows, "column_names": column_names}
        for key, value in (("description", description), ("file_name", file_name), ("file_type", file_type)):
            if value is not None:
                body[key] = value
        response = await request_with_retry(self.client, "POST", "/api/sessions", json=body)
        return SessionInfo.model_validate(response.json()["session"])

    async def get_session(self, session_id: str) -> SessionData:
        response = await request_with_retry(self.client, "GET", f"/api/sessions/{session_id}")
        return SessionData.model_validate(response.json())

    async def get_session_tasks(self, session_id: str) -> list[SessionTask]:
        response = await request_with_retry(self.client, "GET", f"/api/sessions/{session_id}/tasks")
        return [SessionTask.model_validate(item) for item in response.json().get("tasks", [])]

    async def delete_session(self, session_id: str) -> bool:
        response = await request_with_retry(self.client, "DELETE", f"/api/sessions/{session_id}")
        return bool(response.json().get("success", False))

    async def save_snapshot(self, session_id: str, rows: list[DataRow], description: str) -> None:
        await request_with_retry(
            self.client,
            "POST",
            f"/api/sessions/{session_id}/snapshots",
            json={"data": rows, "description": description},
        )
