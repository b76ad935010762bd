"""
Import and synchronization of patients against the beneficiary directory.

The engine never writes to the store: it returns drafts (imports) and
SyncResult values (synchronization) that the caller persists.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional

from biosync.directory import BeneficiaryDirectory
from biosync.errors import MissingRequiredField
from biosync.fingers import finger_label
from biosync.identifiers import canonical_wallet
from biosync.models import (
    Beneficiary,
    BeneficiarySearchParams,
    DigitalBiometric,
    FingerprintRecord,
    Patient,
    SyncResult,
)

logger = logging.getLogger(__name__)

NOTHING_TO_SYNC = "No imported patients to synchronize."
NOT_IMPORTED = "Only imported patients can be synchronized."


class FixedDelayPacer:
    """Waits a fixed interval between successive directory calls."""

    def __init__(self, interval: float = 0.2, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.interval = interval
        self._sleep = sleep

    async def wait(self) -> None:
        if self.interval > 0:
            await self._sleep(self.interval)


def to_digital_biometrics(fingerprints: List[FingerprintRecord]) -> List[DigitalBiometric]:
    """
    Label each fingerprint by finger and drop the ones without image data.
    Only the first fingerprint returned for a finger is kept.
    """
    entries: List[DigitalBiometric] = []
    seen = set()
    for fp in fingerprints:
        label = finger_label(fp.finger_code)
        if not fp.biometry or label in seen:
            continue
        seen.add(label)
        entries.append(DigitalBiometric(finger=label, data=fp.biometry))
    return entries


async def gather_or_cancel(*awaitables: Awaitable[Any]) -> List[Any]:
    """
    Run the awaitables concurrently and return their results in order.

    If one fails, the others are cancelled and awaited before the error is
    re-raised, so no request outlives the operation that started it.
    """
    tasks = [asyncio.ensure_future(awaitable) for awaitable in awaitables]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


class ReconciliationEngine:
    def __init__(self, directory: BeneficiaryDirectory, pacer: Optional[FixedDelayPacer] = None):
        self.directory = directory
        self.pacer = pacer or FixedDelayPacer()

    async def search_beneficiaries(self, params: BeneficiarySearchParams) -> List[Beneficiary]:
        return await self.directory.search(params)

    async def _draft(self, name: str, wallet: str) -> Patient:
        fingerprints, facial = await gather_or_cancel(
            self.directory.fingerprints(wallet),
            self.directory.facial(wallet),
        )
        digital_biometrics = to_digital_biometrics(fingerprints)
        logger.info(
            "Imported wallet %s: %d fingerprint(s), facial %s",
            wallet,
            len(digital_biometrics),
            "present" if facial else "absent",
        )
        return Patient(
            id=0,
            name=name,
            wallet=wallet,
            facial_biometric=facial or "",
            digital_biometrics=digital_biometrics,
            imported=True,
        )

    async def import_from_card_search(self, card_number: str) -> Patient:
        card_number = (card_number or "").strip()
        if not card_number:
            raise MissingRequiredField("card_number")

        beneficiary = await self.directory.detail(card_number)
        wallet = beneficiary.complete_card_number or card_number
        return await self._draft(beneficiary.name.strip(), wallet)

    async def import_from_beneficiary(self, beneficiary: Beneficiary) -> Patient:
        wallet = beneficiary.complete_card_number or canonical_wallet(
            beneficiary.health_insurer, beneficiary.card_number
        )
        return await self._draft(beneficiary.name.strip(), wallet)

    async def sync_one(self, patient: Patient) -> SyncResult:
        if not patient.imported:
            return SyncResult(success=False, message=NOT_IMPORTED)

        logger.info("Synchronizing patient %d (wallet %s)", patient.id, patient.wallet)
        try:
            details, fingerprints, facial = await gather_or_cancel(
                self.directory.detail(patient.wallet),
                self.directory.fingerprints(patient.wallet, tolerant=False),
                self.directory.facial(patient.wallet, tolerant=False),
            )
        except Exception as e:
            logger.warning("Synchronization of patient %d failed: %s", patient.id, e)
            return SyncResult(success=False, message=f"Error synchronizing patient: {e}")

        updated = patient.model_copy(
            update={
                "name": patient.name or details.name.strip(),
                "wallet": details.complete_card_number or patient.wallet,
                "digital_biometrics": to_digital_biometrics(fingerprints),
                "facial_biometric": facial,
            },
            deep=True,
        )
        return SyncResult(
            success=True,
            message=f'Patient "{updated.name}" synchronized successfully.',
            updated_patient=updated,
        )

    async def sync_all(self, patients: List[Patient]) -> List[SyncResult]:
        imported = [patient for patient in patients if patient.imported]
        if not imported:
            return [SyncResult(success=False, message=NOTHING_TO_SYNC)]

        results: List[SyncResult] = []
        for index, patient in enumerate(imported):
            if index:
                await self.pacer.wait()
            try:
                results.append(await self.sync_one(patient))
            except Exception as e:
                logger.exception("Unexpected error synchronizing patient %d", patient.id)
                results.append(SyncResult(success=False, message=f"Error synchronizing {patient.name}: {e}"))

        succeeded = sum(1 for result in results if result.success)
        logger.info("Batch synchronization finished: %d updated, %d failed", succeeded, len(results) - succeeded)
        return results
