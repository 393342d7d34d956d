"""
Async REST client for the App Hub API.

One method per route. Responses are parsed into the shared pydantic models;
failures are raised as `store.errors.ApiError` subclasses.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Type, TypeVar

import httpx
from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as SchemaError

from models.app_data import AppData, AppDataCreate, AppDataUpdate
from models.base import DeleteResult
from models.feedback import Feedback, FeedbackCreate, FeedbackUpdate
from models.health import Health
from store.errors import MalformedResponseError, NetworkError, error_for_status

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

_APP_LIST = TypeAdapter(List[AppData])
_FEEDBACK_LIST = TypeAdapter(List[Feedback])


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        message = body.get("error") or body.get("detail")
        if isinstance(message, str) and message:
            return message
    return f"HTTP error! status: {response.status_code}"


def _payload(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True, exclude_unset=True)


class ApiClient:
    """
    An asynchronous client for the App Hub REST API.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initializes the client.

        Args:
            base_url: API root including the version prefix (e.g. http://localhost:8000/api/v1).
            timeout: Ceiling in seconds for every request.
            transport: Optional httpx transport (tests, in-process ASGI apps).
        """
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)
        logger.info(f"ApiClient initialized for base URL: {self.base_url}")

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self.client.request(method, path, **kwargs)
        except httpx.RequestError as e:
            logger.error(f"{method} {path} failed without a response: {e!r}")
            raise NetworkError(f"Network error: {e}") from e

        if response.is_error:
            message = _error_message(response)
            logger.error(f"{method} {path} -> {response.status_code}: {message}")
            raise error_for_status(response.status_code, message)

        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponseError(
                f"Invalid JSON from {method} {path}", response.status_code
            ) from e

    @staticmethod
    def _parse(model: Type[M], data: Any) -> M:
        try:
            return model.model_validate(data)
        except SchemaError as e:
            raise MalformedResponseError(f"Unexpected {model.__name__} payload: {e}") from e

    @staticmethod
    def _parse_list(adapter: TypeAdapter, data: Any) -> list:
        try:
            return adapter.validate_python(data)
        except SchemaError as e:
            raise MalformedResponseError(f"Unexpected list payload: {e}") from e

    # -- apps -----------------------------------------------------------

    async def list_apps(
        self, search: Optional[str] = None, tech_stack: Optional[Sequence[str]] = None
    ) -> List[AppData]:
        params: List[tuple] = []
        if search:
            params.append(("search", search))
        for tech in tech_stack or ():
            params.append(("techStack", tech))
        data = await self._request("GET", "/apps", params=params)
        return self._parse_list(_APP_LIST, data)

    async def get_app(self, app_id: str) -> AppData:
        return self._parse(AppData, await self._request("GET", f"/apps/{app_id}"))

    async def create_app(self, draft: AppDataCreate) -> AppData:
        data = await self._request("POST", "/apps", json=_payload(draft))
        return self._parse(AppData, data)

    async def update_app(self, app_id: str, patch: AppDataUpdate) -> AppData:
        data = await self._request("PUT", f"/apps/{app_id}", json=_payload(patch))
        return self._parse(AppData, data)

    async def delete_app(self, app_id: str) -> DeleteResult:
        return self._parse(DeleteResult, await self._request("DELETE", f"/apps/{app_id}"))

    # -- feedback -------------------------------------------------------

    async def list_feedback(
        self,
        app_id: Optional[str] = None,
        status: Optional[str] = None,
        type: Optional[str] = None,
    ) -> List[Feedback]:
        params = {k: v for k, v in (("appId", app_id), ("status", status), ("type", type)) if v}
        data = await self._request("GET", "/feedback", params=params)
        return self._parse_list(_FEEDBACK_LIST, data)

    async def get_feedback(self, feedback_id: str) -> Feedback:
        return self._parse(Feedback, await self._request("GET", f"/feedback/{feedback_id}"))

    async def create_feedback(self, draft: FeedbackCreate) -> Feedback:
        data = await self._request("POST", "/feedback", json=_payload(draft))
        return self._parse(Feedback, data)

    async def update_feedback(self, feedback_id: str, patch: FeedbackUpdate) -> Feedback:
        data = await self._request("PUT", f"/feedback/{feedback_id}", json=_payload(patch))
        return self._parse(Feedback, data)

    async def vote_feedback(self, feedback_id: str, increment: int = 1) -> Feedback:
        data = await self._request(
            "POST", f"/feedback/{feedback_id}/vote", json={"increment": increment}
        )
        return self._parse(Feedback, data)

    async def delete_feedback(self, feedback_id: str) -> DeleteResult:
        return self._parse(
            DeleteResult, await self._request("DELETE", f"/feedback/{feedback_id}")
        )

    async def health(self) -> Health:
        return self._parse(Health, await self._request("GET", "/health"))

    async def close(self):
        """
        Closes the underlying HTTP client.
        """
        await self.client.aclose()
        logger.info("ApiClient closed.")
