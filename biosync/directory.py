"""
Beneficiary directory client.

The directory is inconsistent about field names and value types: names
arrive as ``name``, ``cardName``, ``fullName``, ``nome`` or nested under
``person``; insurer and card codes arrive as numbers or strings. Every
response is normalized here so that only Beneficiary and FingerprintRecord
values leave this module.
"""

import asyncio
import logging
from typing import Any, Awaitable, Dict, List, Optional, Protocol

from biosync.biometrics import sanitize
from biosync.errors import DirectoryRequestFailed, DirectoryTimeout, MissingRequiredField
from biosync.identifiers import INSURER_WIDTH, canonical_wallet, directory_query_id
from biosync.models import Beneficiary, BeneficiarySearchParams, FingerprintRecord

logger = logging.getLogger(__name__)

SEARCH_NAME_KEYS = ("name", "cardName", "fullName", "nome")
DETAIL_NAME_KEYS = ("cardName", "name")


class DirectoryTransportProtocol(Protocol):
    async def search(self, params: BeneficiarySearchParams) -> List[Any]: ...

    async def detail(self, query_id: str) -> Dict[str, Any]: ...

    async def fingerprints(self, wallet: str) -> List[Any]: ...

    async def facial(self, wallet: str) -> Any: ...


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _first_non_empty(raw: Dict[str, Any], keys) -> str:
    for key in keys:
        value = _text(raw.get(key)).strip()
        if value:
            return value
    return ""


def _finger_code(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def normalize_search_item(raw: Dict[str, Any]) -> Beneficiary:
    health_insurer = _text(raw.get("healthInsurer"))
    card_number = _text(raw.get("cardNumber"))
    return Beneficiary(
        name=_first_non_empty(raw, SEARCH_NAME_KEYS),
        health_insurer=health_insurer,
        card_number=card_number,
        complete_card_number=_text(raw.get("completeCardNumber")) or canonical_wallet(health_insurer, card_number),
    )


def normalize_detail(raw: Dict[str, Any], requested_card: str) -> Beneficiary:
    name = _first_non_empty(raw, DETAIL_NAME_KEYS)
    if not name and isinstance(raw.get("person"), dict):
        name = _first_non_empty(raw["person"], ("name",))

    raw_insurer = _text(raw.get("healthInsurer"))
    health_insurer = raw_insurer.rjust(INSURER_WIDTH, "0")
    card_number = _text(raw.get("cardNumber")) or directory_query_id(requested_card)

    complete_card_number = _text(raw.get("completeCardNumber"))
    if not complete_card_number:
        # Without an insurer code the requested wallet is the best canonical form we have.
        complete_card_number = canonical_wallet(health_insurer, card_number) if raw_insurer else requested_card
    return Beneficiary(
        name=name,
        health_insurer=health_insurer,
        card_number=card_number,
        complete_card_number=complete_card_number,
    )


def normalize_fingerprint(raw: Dict[str, Any]) -> FingerprintRecord:
    return FingerprintRecord(
        finger_code=_finger_code(raw.get("fingerCode") or raw.get("code") or 0),
        biometry=_text(raw.get("biometry") or raw.get("data")),
    )


def matches_guarantor(beneficiary: Beneficiary, guarantor: str) -> bool:
    term = guarantor.lower()
    fields = (
        beneficiary.name,
        beneficiary.health_insurer,
        beneficiary.card_number,
        beneficiary.complete_card_number or "",
    )
    return any(term in field.lower() for field in fields)


class BeneficiaryDirectory:
    """
    Search, detail and biometric lookups against the directory.

    ``fingerprints`` and ``facial`` are tolerant by default: a failed request
    is logged and reported as "no data". Pass ``tolerant=False`` to get the
    underlying DirectoryRequestFailed instead.
    """

    def __init__(self, transport: DirectoryTransportProtocol, request_timeout: Optional[float] = 30.0):
        self.transport = transport
        self.request_timeout = request_timeout

    async def _call(self, description: str, awaitable: Awaitable[Any]) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.request_timeout)
        except asyncio.TimeoutError as e:
            raise DirectoryTimeout(f"{description} timed out after {self.request_timeout}s") from e

    async def search(self, params: BeneficiarySearchParams) -> List[Beneficiary]:
        guarantor = (params.guarantor or "").strip()
        if not guarantor:
            raise MissingRequiredField("guarantor")

        raw_items = await self._call("Beneficiary search", self.transport.search(params))
        beneficiaries = [normalize_search_item(item) for item in raw_items if isinstance(item, dict)]
        matches = [b for b in beneficiaries if matches_guarantor(b, guarantor)]
        logger.info("Beneficiary search returned %d item(s), %d matching", len(beneficiaries), len(matches))
        return matches

    async def detail(self, card_number: str) -> Beneficiary:
        query_id = directory_query_id(card_number)
        raw = await self._call(f"Detail lookup for {query_id}", self.transport.detail(query_id))
        return normalize_detail(raw if isinstance(raw, dict) else {}, card_number)

    async def fingerprints(self, wallet: str, tolerant: bool = True) -> List[FingerprintRecord]:
        try:
            raw_items = await self._call(f"Fingerprint lookup for {wallet}", self.transport.fingerprints(wallet))
        except DirectoryRequestFailed as e:
            if not tolerant:
                raise
            logger.warning("Fingerprints unavailable for wallet %s: %s", wallet, e)
            return []

        records = [normalize_fingerprint(item) for item in raw_items or [] if isinstance(item, dict)]
        logger.info("Found %d fingerprint(s) for wallet %s", len(records), wallet)
        return records

    async def facial(self, wallet: str, tolerant: bool = True) -> str:
        try:
            raw = await self._call(f"Facial lookup for {wallet}", self.transport.facial(wallet))
        except DirectoryRequestFailed as e:
            if not tolerant:
                raise
            logger.warning("Facial biometry unavailable for wallet %s: %s", wallet, e)
            return ""

        payload = sanitize(raw)
        logger.debug("Facial biometry for wallet %s normalized, length %d", wallet, len(payload))
        return payload
