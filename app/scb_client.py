import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional, Type
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ValidationError

from config_loader import get_config
from rate_limiter import RateGovernor, RateLimitState

from .errors import (
    FeatureUnavailable,
    MalformedResponse,
    RateLimitExceeded,
    SCBError,
    TransportError,
    UpstreamError,
    UpstreamNotFound,
    UpstreamValidationError,
)
from .schemas import ConfigResponse, JsonStatDataset, SelectionValidation, TablesResponse
from .translator import check_selection

logger = logging.getLogger(__name__)

_STATUS_ERRORS = {
    400: UpstreamValidationError,
    404: UpstreamNotFound,
    422: UpstreamValidationError,
    429: RateLimitExceeded,
}


class SCBClient:
    """Thin async wrapper around the SCB PxWebApi v2 endpoints.

    Every outbound call passes the rate governor first. Calls are never retried
    here; a failure surfaces immediately as an SCBError subclass.
    """

    BASE_URL = "https://api.scb.se/OV0104/v2beta/api/v2"

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        governor: Optional[RateGovernor] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_url_length: Optional[int] = None,
    ):
        config = get_config()
        self.base_url = (base_url or config.base_url or self.BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else config.request_timeout
        self.max_url_length = max_url_length or config.max_url_length
        self.governor = governor or RateGovernor(
            RateLimitState(
                max_calls_per_window=config.default_max_calls,
                window_duration_seconds=config.default_time_window,
            )
        )
        self._client = httpx.AsyncClient(
            timeout=self.timeout, transport=transport, headers={"Accept": "application/json"}
        )
        self._limits_lock = asyncio.Lock()
        self._limits_loaded = False

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _ensure_limits(self) -> None:
        """Load the API's own quota once; fall back to configured defaults.

        The /config call counts against the window like any other call.
        """
        if self._limits_loaded:
            return
        async with self._limits_lock:
            if self._limits_loaded:
                return
            if not self.governor.admit().allowed:
                logger.warning("Rate limit window is full; deferring the API rate limit lookup")
                return
            try:
                payload = await self._send("GET", "/config")
                api_config = ConfigResponse.model_validate(payload)
                self.governor.configure(api_config.maxCallsPerTimeWindow, api_config.timeWindow)
                logger.info(
                    "Rate limit from API: %s calls per %ss",
                    api_config.maxCallsPerTimeWindow,
                    api_config.timeWindow,
                )
            except (UpstreamError, TransportError, RateLimitExceeded, ValidationError, ValueError) as e:
                state = self.governor.state
                logger.warning(
                    "Could not load API rate limits (%s); using %s calls per %ss",
                    e,
                    state.max_calls_per_window,
                    state.window_duration_seconds,
                )
            self._limits_loaded = True

    async def request(
        self,
        path: str,
        query: Optional[Mapping[str, Any]] = None,
        method: str = "GET",
        json_body: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Admit the call through the rate governor and perform it."""
        await self._ensure_limits()

        admission = self.governor.admit()
        if not admission.allowed:
            state = self.governor.state
            raise RateLimitExceeded(
                f"Rate limit of {state.max_calls_per_window} calls per "
                f"{state.window_duration_seconds:g} seconds reached. "
                f"Try again in {admission.reset_in_seconds} seconds.",
                reset_in_seconds=admission.reset_in_seconds,
            )

        return await self._send(method, path, query, json_body)

    async def _send(
        self,
        method: str,
        path: str,
        query: Optional[Mapping[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        logger.debug("%s %s params=%s", method, url, query)
        try:
            response = await self._client.request(method, url, params=query, json=json_body)
        except httpx.TimeoutException as e:
            raise TransportError(f"Request to {url} timed out after {self.timeout:g} seconds") from e
        except httpx.RequestError as e:
            raise TransportError(f"Could not reach the SCB API at {url}: {e}") from e

        if not response.is_success:
            raise self._error_from_response(response)

        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponse(
                f"SCB API returned a non-JSON response for {path}",
                http_status=response.status_code,
                body=response.text,
            ) from e

    @staticmethod
    def _error_from_response(response: httpx.Response) -> SCBError:
        """Build an error that keeps the HTTP status and the raw body."""
        status = response.status_code
        body = response.text
        error_type = title = detail = None

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if isinstance(payload, dict):
            envelope = payload.get("error") if isinstance(payload.get("error"), dict) else payload
            error_type = envelope.get("type")
            title = envelope.get("title")
            detail = envelope.get("detail")

        if error_type or title or detail:
            message = f"SCB API error {status}: {title or error_type}"
            if detail:
                message += f" - {detail}"
        else:
            message = f"SCB API error {status} {response.reason_phrase}: {body[:500]}"

        error_class = _STATUS_ERRORS.get(status, UpstreamError)
        logger.warning("Upstream request %s failed: %s", response.request.url, message)
        return error_class(message, http_status=status, body=body, error_type=error_type, detail=detail)

    @staticmethod
    def _validated(model: Type[BaseModel], payload: Any, what: str) -> BaseModel:
        try:
            return model.model_validate(payload)
        except ValidationError as e:
            raise MalformedResponse(f"Unexpected {what} response from the SCB API: {e.error_count()} problems") from e

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    async def get_config(self) -> Dict[str, Any]:
        payload = await self.request("/config")
        api_config = self._validated(ConfigResponse, payload, "config")
        self.governor.configure(api_config.maxCallsPerTimeWindow, api_config.timeWindow)
        return api_config.model_dump(exclude_none=True)

    async def search_tables(
        self,
        query: Optional[str] = None,
        past_days: Optional[int] = None,
        include_discontinued: bool = False,
        page_number: int = 1,
        page_size: Optional[int] = None,
        lang: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Full-text table search, one page at a time."""
        config = get_config()
        page_size = page_size or config.default_page_size
        params: Dict[str, Any] = {
            "lang": lang or config.default_language,
            "pageNumber": max(1, page_number),
            "pageSize": max(1, min(page_size, config.max_page_size)),
        }
        if query:
            params["query"] = query
        if past_days:
            params["pastDays"] = past_days
        if include_discontinued:
            params["includeDiscontinued"] = "true"

        payload = await self.request("/tables", params)
        return self._validated(TablesResponse, payload, "table search").model_dump(exclude_none=True)

    async def get_table_metadata(self, table_id: str, lang: Optional[str] = None) -> Dict[str, Any]:
        """Dimension structure of a table as JSON-stat2."""
        params = {"lang": lang or get_config().default_language, "outputFormat": "json-stat2"}
        payload = await self.request(f"/tables/{quote(table_id, safe='')}/metadata", params)
        self._validated(JsonStatDataset, payload, "table metadata")
        return payload

    async def get_table_data(
        self, table_id: str, selection: Optional[Mapping[str, List[str]]] = None, lang: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Fetch data for a translated selection.

        Small selections go out as GET with valueCodes[<variable>] parameters.
        When the URL would exceed max_url_length, or a value contains a comma,
        the selection is POSTed as JSON instead.
        """
        path = f"/tables/{quote(table_id, safe='')}/data"
        params: Dict[str, Any] = {"lang": lang or get_config().default_language, "outputFormat": "json-stat2"}
        selection = selection or {}

        value_codes = {f"valueCodes[{code}]": ",".join(values) for code, values in selection.items()}
        url = httpx.URL(f"{self.base_url}{path}", params={**params, **value_codes})
        needs_post = len(str(url)) > self.max_url_length or any(
            "," in value for values in selection.values() for value in values
        )

        if needs_post:
            body = {
                "selection": [
                    {"variableCode": code, "valueCodes": list(values)} for code, values in selection.items()
                ]
            }
            logger.debug("Selection for %s too large for GET, using POST", table_id)
            payload = await self.request(path, params, method="POST", json_body=body)
        else:
            payload = await self.request(path, {**params, **value_codes})

        self._validated(JsonStatDataset, payload, "table data")
        return payload

    async def validate_selection(
        self, table_id: str, selection: Optional[Mapping[str, Any]], lang: Optional[str] = None
    ) -> SelectionValidation:
        """Check a selection against the table's metadata before any data request."""
        metadata = await self.get_table_metadata(table_id, lang)
        return check_selection(metadata, selection, sample_size=get_config().suggestion_sample_size)

    async def get_navigation(self, folder_id: Optional[str] = None, lang: Optional[str] = None) -> Dict[str, Any]:
        """Folder navigation was removed from API v2; no request is made."""
        raise FeatureUnavailable(
            "Folder browsing is not available in SCB API v2",
            detail="Use scb_search_tables to find tables by keyword instead",
        )

    def get_usage_info(self) -> Dict[str, Any]:
        return self.governor.usage()

    async def close(self):
        await self._client.aclose()
