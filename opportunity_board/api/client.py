"""
Opportunity API Client
======================

httpx implementation of RemoteOpportunityApi.

Requests are validated against the input schemas before they leave and
responses against the entity model after they arrive; either failure is
an InputValidationError carrying field-level messages. HTTP and
transport failures map onto the rest of the error taxonomy:

- 404                    -> OpportunityNotFoundError
- 422                    -> InputValidationError
- other 4xx/5xx, network -> RemoteError
"""

from typing import Any, Mapping, Optional, Type

import httpx
import structlog
from pydantic import ValidationError
from pydantic.alias_generators import to_snake

from opportunity_board.api.base import RemoteOpportunityApi
from opportunity_board.core.config import settings
from opportunity_board.core.errors import (
    InputValidationError,
    OpportunityNotFoundError,
    RemoteError,
)
from opportunity_board.core.models import Opportunity, OpportunityStatus, Partition, RoleStatus
from opportunity_board.core.schemas import (
    BaseSchema,
    OpportunityCreate,
    OpportunityFilters,
    OpportunityMoveRequest,
    OpportunityUpdate,
    RoleCreate,
    RoleStatusUpdate,
    RoleUpdate,
)

logger = structlog.get_logger()


class OpportunityApiClient(RemoteOpportunityApi):
    """
    Client for the opportunities REST API.

    Owns its httpx.AsyncClient unless one is passed in (tests pass a client
    bound to an ASGI transport).
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url or settings.API_BASE_URL
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout if timeout is not None else settings.REMOTE_TIMEOUT_SECONDS,
        )
        logger.debug("opportunity_api_client_initialized", base_url=str(self._client.base_url))

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "OpportunityApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ==================== Reads ====================

    async def list_opportunities(
        self,
        partition: Partition,
        filters: Optional[OpportunityFilters] = None,
    ) -> tuple[Opportunity, ...]:
        partition = Partition(partition)
        params = {"status": partition.value}
        if filters is not None:
            params.update(filters.to_query_params())
        endpoint = "GET /opportunities"
        data = await self._request("GET", "/opportunities", endpoint, params=params)
        try:
            return tuple(Opportunity.model_validate(item) for item in data)
        except (ValidationError, TypeError) as e:
            raise self._response_error(e, endpoint, data) from e

    # ==================== Mutations ====================

    async def create_opportunity(self, fields: Mapping[str, Any]) -> Opportunity:
        endpoint = "POST /opportunities"
        body = self._validate(OpportunityCreate, fields, endpoint)
        return await self._send_for_opportunity(
            "POST", "/opportunities", endpoint,
            json=body.model_dump(mode="json", by_alias=True),
        )

    async def add_role(self, opportunity_id: str, fields: Mapping[str, Any]) -> Opportunity:
        endpoint = "POST /opportunities/{id}/roles"
        body = self._validate(RoleCreate, fields, endpoint)
        return await self._send_for_opportunity(
            "POST", f"/opportunities/{opportunity_id}/roles", endpoint,
            json=body.model_dump(mode="json", by_alias=True),
            opportunity_id=opportunity_id,
        )

    async def update_role(
        self,
        opportunity_id: str,
        role_id: str,
        fields: Mapping[str, Any],
    ) -> Opportunity:
        endpoint = "PATCH /opportunities/{id}/roles/{role_id}"
        body = self._validate(RoleUpdate, fields, endpoint)
        return await self._send_for_opportunity(
            "PATCH", f"/opportunities/{opportunity_id}/roles/{role_id}", endpoint,
            json=body.to_payload(),
            opportunity_id=opportunity_id,
        )

    async def update_role_status(
        self,
        opportunity_id: str,
        role_id: str,
        status: RoleStatus,
    ) -> Opportunity:
        endpoint = "PATCH /opportunities/{id}/roles/{role_id}/status"
        body = self._validate(RoleStatusUpdate, {"status": status}, endpoint)
        return await self._send_for_opportunity(
            "PATCH", f"/opportunities/{opportunity_id}/roles/{role_id}/status", endpoint,
            json=body.to_payload(),
            opportunity_id=opportunity_id,
        )

    async def move_opportunity(self, opportunity_id: str, status: OpportunityStatus) -> Opportunity:
        endpoint = "POST /opportunities/{id}/move"
        body = self._validate(OpportunityMoveRequest, {"status": status}, endpoint)
        return await self._send_for_opportunity(
            "POST", f"/opportunities/{opportunity_id}/move", endpoint,
            json=body.to_payload(),
            opportunity_id=opportunity_id,
        )

    async def update_opportunity(self, opportunity_id: str, fields: Mapping[str, Any]) -> Opportunity:
        endpoint = "PATCH /opportunities/{id}"
        body = self._validate(OpportunityUpdate, fields, endpoint)
        return await self._send_for_opportunity(
            "PATCH", f"/opportunities/{opportunity_id}", endpoint,
            json=body.to_payload(),
            opportunity_id=opportunity_id,
        )

    # ==================== Internals ====================

    @staticmethod
    def _validate(schema: Type[BaseSchema], fields: Mapping[str, Any], endpoint: str) -> BaseSchema:
        try:
            return schema.model_validate(dict(fields))
        except ValidationError as e:
            logger.info("request_validation_failed", endpoint=endpoint, errors=e.error_count())
            raise InputValidationError.from_pydantic(e, endpoint=endpoint, data=dict(fields)) from e

    @staticmethod
    def _response_error(exc: Exception, endpoint: str, data: Any) -> InputValidationError:
        logger.warning("response_validation_failed", endpoint=endpoint, error=str(exc))
        if isinstance(exc, ValidationError):
            return InputValidationError.from_pydantic(exc, endpoint=endpoint, data=data)
        return InputValidationError(f"Unexpected response from {endpoint}", endpoint=endpoint, data=data)

    async def _send_for_opportunity(
        self,
        method: str,
        url: str,
        endpoint: str,
        json: Any = None,
        opportunity_id: Optional[str] = None,
    ) -> Opportunity:
        data = await self._request(method, url, endpoint, json=json, opportunity_id=opportunity_id)
        try:
            return Opportunity.model_validate(data)
        except ValidationError as e:
            raise self._response_error(e, endpoint, data) from e

    async def _request(
        self,
        method: str,
        url: str,
        endpoint: str,
        params: Optional[dict[str, Any]] = None,
        json: Any = None,
        opportunity_id: Optional[str] = None,
    ) -> Any:
        try:
            response = await self._client.request(method, url, params=params, json=json)
        except httpx.TimeoutException as e:
            logger.warning("remote_timeout", endpoint=endpoint)
            raise RemoteError(f"Request to {endpoint} timed out") from e
        except httpx.HTTPError as e:
            logger.warning("remote_transport_error", endpoint=endpoint, error=str(e))
            raise RemoteError(f"Request to {endpoint} failed: {e}") from e

        if response.status_code == 404:
            raise OpportunityNotFoundError(_detail(response) or "Not found", opportunity_id)
        if response.status_code == 422:
            raise InputValidationError(
                f"Validation failed for {endpoint}",
                field_errors=_field_errors(response),
                endpoint=endpoint,
                data=json,
            )
        if response.status_code >= 400:
            logger.warning("remote_error", endpoint=endpoint, status_code=response.status_code)
            raise RemoteError(
                _detail(response) or f"{endpoint} returned {response.status_code}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise RemoteError(f"Invalid JSON from {endpoint}", status_code=response.status_code) from e


def _detail(response: httpx.Response) -> Optional[str]:
    try:
        detail = response.json().get("detail")
    except (ValueError, AttributeError):
        return None
    return detail if isinstance(detail, str) else None


def _field_errors(response: httpx.Response) -> dict[str, list[str]]:
    """Group FastAPI's 422 detail entries by field name."""
    try:
        detail = response.json().get("detail")
    except (ValueError, AttributeError):
        return {}
    if not isinstance(detail, list):
        return {"__root__": [str(detail)]} if detail else {}

    grouped: dict[str, list[str]] = {}
    for error in detail:
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        name = to_snake(loc[0]) if loc else "__root__"
        grouped.setdefault(name, []).append(error.get("msg", "Invalid value"))
    return grouped
