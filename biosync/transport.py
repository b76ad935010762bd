"""
HTTP transport for the beneficiary directory.

Only issues requests and hands back the decoded bodies; shaping the
loosely-typed payloads is left to :mod:`biosync.directory`.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from biosync.config import DirectorySettings
from biosync.errors import DirectoryRequestFailed, DirectoryTimeout
from biosync.models import BeneficiarySearchParams

logger = logging.getLogger(__name__)

SEARCH_ENDPOINT = "/dts/datasul-rest/resources/prg/hvp/v2/beneficiaries/subscriber"
CHECKIN_ENDPOINT = "/dts/datasul-rest/resources/prg/portprest/v1/checkin/beneficiaries"
SEARCH_EXPAND = "person,dependents,dependents.person,cancellationReason,dependents.cancellationReason"
CLINIC_HEADER = "x-totvs-hgp-portal-prestador-clinic"


class DirectoryTransport:
    """
    Async client for the directory's REST API.

    Example:
        async with DirectoryTransport(DirectorySettings.from_env()) as transport:
            items = await transport.search(BeneficiarySearchParams(guarantor="123"))
    """

    def __init__(self, settings: DirectorySettings, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self._client = client

    async def __aenter__(self) -> "DirectoryTransport":
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.settings.base_url.rstrip("/"),
                auth=httpx.BasicAuth(self.settings.user, self.settings.password),
                timeout=httpx.Timeout(self.settings.timeout_seconds),
                headers={"Accept": "application/json"},
            )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError(
                "Transport not initialized. Use 'async with DirectoryTransport(settings) as transport:'"
            )
        return self._client

    def _checkin_params(self) -> Dict[str, str]:
        return {
            "provider": self.settings.provider_code,
            "providerHealthInsurer": self.settings.health_insurer_code,
            "clinic": self.settings.clinic,
        }

    def _checkin_headers(self) -> Dict[str, str]:
        return {CLINIC_HEADER: self.settings.clinic}

    async def _get(self, url: str, params: Dict[str, str], headers: Optional[Dict[str, str]] = None) -> httpx.Response:
        client = self._get_client()
        logger.debug("GET %s params=%s", url, params)
        try:
            response = await client.get(url, params=params, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise DirectoryRequestFailed(f"Directory request failed: {status}", status_code=status) from e
        except httpx.TimeoutException as e:
            raise DirectoryTimeout(f"Directory request timed out: {e}") from e
        except httpx.RequestError as e:
            raise DirectoryRequestFailed(f"Directory request error: {e}") from e
        return response

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise DirectoryRequestFailed(f"Could not decode directory JSON: {e}") from e

    @staticmethod
    def _items(body: Any) -> List[Any]:
        items = body.get("items") if isinstance(body, dict) else None
        return items if isinstance(items, list) else []

    async def search(self, params: BeneficiarySearchParams) -> List[Any]:
        query = {
            "includeActive": "true",
            "includeInactive": "false",
            "includePending": "true",
            "guarantor": params.guarantor,
            "page": "1",
            "expand": SEARCH_EXPAND,
        }
        for key in ("modality", "proposal", "contract"):
            value = getattr(params, key)
            if value:
                query[key] = value

        response = await self._get(SEARCH_ENDPOINT, query)
        return self._items(self._json(response))

    async def detail(self, query_id: str) -> Dict[str, Any]:
        response = await self._get(
            f"{CHECKIN_ENDPOINT}/{query_id}", self._checkin_params(), self._checkin_headers()
        )
        body = self._json(response)
        return body if isinstance(body, dict) else {}

    async def fingerprints(self, wallet: str) -> List[Any]:
        response = await self._get(
            f"{CHECKIN_ENDPOINT}/{wallet}/fingerPrints", self._checkin_params(), self._checkin_headers()
        )
        return self._items(self._json(response))

    async def facial(self, wallet: str) -> Any:
        response = await self._get(
            f"{CHECKIN_ENDPOINT}/{wallet}/photo", self._checkin_params(), self._checkin_headers()
        )
        # Usually a bare base64 body; some deployments wrap it as {"photo": ...}
        if "json" in response.headers.get("content-type", ""):
            return self._json(response)
        return response.text
