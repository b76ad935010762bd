import asyncio

import pytest
from unittest.mock import AsyncMock

from biosync.directory import BeneficiaryDirectory
from biosync.errors import DirectoryRequestFailed, MissingRequiredField
from biosync.models import Beneficiary, BeneficiarySearchParams, DigitalBiometric, FingerprintRecord, Patient
from biosync.reconciliation import FixedDelayPacer, ReconciliationEngine, NOTHING_TO_SYNC, to_digital_biometrics
from biosync.store import PatientStore


class MemoryPersistence:
    def __init__(self):
        self.saved = []

    def load_all(self):
        return []

    def save_all(self, patients):
        self.saved.append([p.model_copy(deep=True) for p in patients])


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def transport():
    transport = AsyncMock()
    transport.detail.return_value = {
        "cardName": "Maria Souza",
        "healthInsurer": 1,
        "cardNumber": "0000000000042",
    }
    transport.fingerprints.return_value = [
        {"fingerCode": 6, "biometry": "AAAA"},
        {"fingerCode": 1, "biometry": ""},
        {"fingerCode": 12, "biometry": "CCCC"},
    ]
    transport.facial.return_value = "data:image/jpeg;base64,/9j/4AAQ"
    return transport


@pytest.fixture
def engine(transport, sleeps):
    async def fake_sleep(seconds):
        sleeps.append(seconds)

    return ReconciliationEngine(
        BeneficiaryDirectory(transport, request_timeout=1.0),
        FixedDelayPacer(0.2, sleep=fake_sleep),
    )


def imported_patient(patient_id=1, name="Maria", wallet="00010000000000042"):
    return Patient(
        id=patient_id,
        name=name,
        wallet=wallet,
        facial_biometric="OLDFACE",
        digital_biometrics=[DigitalBiometric(finger="Mínimo Esquerdo", data="OLD")],
        imported=True,
    )


# Import

@pytest.mark.asyncio
async def test_import_from_card_search(engine, transport):
    draft = await engine.import_from_card_search(" 00010000000000042 ")

    transport.detail.assert_awaited_once_with("42")
    transport.fingerprints.assert_awaited_once_with("00010000000000042")
    transport.facial.assert_awaited_once_with("00010000000000042")
    assert draft.id == 0
    assert draft.imported is True
    assert draft.name == "Maria Souza"
    assert draft.wallet == "00010000000000042"
    assert draft.facial_biometric == "/9j/4AAQ"
    assert [(d.finger, d.data) for d in draft.digital_biometrics] == [
        ("Polegar Direito", "AAAA"),
        ("Dedo 12", "CCCC"),
    ]


@pytest.mark.asyncio
async def test_import_from_card_search_requires_card(engine, transport):
    with pytest.raises(MissingRequiredField):
        await engine.import_from_card_search("  ")
    transport.detail.assert_not_called()


@pytest.mark.asyncio
async def test_import_from_card_search_propagates_detail_failure(engine, transport):
    transport.detail.side_effect = DirectoryRequestFailed("Directory request failed: 500")
    with pytest.raises(DirectoryRequestFailed):
        await engine.import_from_card_search("42")


@pytest.mark.asyncio
async def test_import_from_beneficiary_survives_missing_biometrics(engine, transport):
    transport.fingerprints.side_effect = DirectoryRequestFailed("down")
    transport.facial.side_effect = DirectoryRequestFailed("down")

    draft = await engine.import_from_beneficiary(
        Beneficiary(name=" João Silva ", health_insurer="1", card_number="42")
    )

    transport.detail.assert_not_called()
    assert draft.name == "João Silva"
    assert draft.wallet == "00010000000000042"
    assert draft.digital_biometrics == []
    assert draft.facial_biometric == ""
    assert draft.imported is True


@pytest.mark.asyncio
async def test_search_beneficiaries_delegates(engine, transport):
    transport.search.return_value = [{"name": "João Silva", "healthInsurer": "1", "cardNumber": "42"}]
    results = await engine.search_beneficiaries(BeneficiarySearchParams(guarantor="joão"))
    assert [b.complete_card_number for b in results] == ["00010000000000042"]


# Single synchronization

@pytest.mark.asyncio
async def test_sync_one_keeps_local_name(engine):
    patient = imported_patient(name="Maria")
    result = await engine.sync_one(patient)

    assert result.success is True
    assert result.updated_patient.name == "Maria"
    assert result.updated_patient.id == patient.id
    assert patient.facial_biometric == "OLDFACE"


@pytest.mark.asyncio
async def test_sync_one_fills_empty_name_and_replaces_biometrics(engine, transport):
    transport.detail.return_value = {"cardName": "Maria Souza", "completeCardNumber": "00019999999999999"}

    result = await engine.sync_one(imported_patient(name=""))

    updated = result.updated_patient
    assert updated.name == "Maria Souza"
    assert updated.wallet == "00019999999999999"
    assert updated.facial_biometric == "/9j/4AAQ"
    assert [d.finger for d in updated.digital_biometrics] == ["Polegar Direito", "Dedo 12"]


@pytest.mark.asyncio
async def test_sync_one_empty_facial_overwrites_local(engine, transport):
    transport.facial.return_value = ""
    transport.fingerprints.return_value = []

    result = await engine.sync_one(imported_patient())

    assert result.success is True
    assert result.updated_patient.facial_biometric == ""
    assert result.updated_patient.digital_biometrics == []


@pytest.mark.asyncio
async def test_sync_one_rejects_manual_patients(engine, transport):
    result = await engine.sync_one(imported_patient().model_copy(update={"imported": False}))

    assert result.success is False
    assert result.updated_patient is None
    transport.detail.assert_not_called()


@pytest.mark.asyncio
async def test_sync_one_facial_failure_leaves_store_untouched(engine, transport):
    transport.facial.side_effect = DirectoryRequestFailed("Directory request failed: 503")
    persistence = MemoryPersistence()
    store = PatientStore(persistence)
    patient = store.create(imported_patient().model_copy(update={"id": 0}))
    before = store.get(patient.id)

    result = await engine.sync_one(patient)
    store.apply_sync_results([result])

    assert result.success is False
    assert "503" in result.message
    assert store.get(patient.id) == before
    assert len(persistence.saved) == 1


@pytest.mark.asyncio
async def test_sync_one_fingerprint_failure_fails_whole_sync(engine, transport):
    transport.fingerprints.side_effect = DirectoryRequestFailed("down")
    result = await engine.sync_one(imported_patient())
    assert result.success is False
    assert result.updated_patient is None


@pytest.mark.asyncio
async def test_failed_sync_cancels_pending_requests(engine, transport):
    events = []

    async def slow_fingerprints(wallet):
        try:
            await asyncio.sleep(0.3)
        except asyncio.CancelledError:
            events.append("fingerprints cancelled")
            raise
        events.append("fingerprints finished")
        return []

    transport.detail.side_effect = DirectoryRequestFailed("Directory request failed: 500")
    transport.fingerprints.side_effect = slow_fingerprints

    result = await engine.sync_one(imported_patient())

    assert result.success is False
    assert events == ["fingerprints cancelled"]
    await asyncio.sleep(0.4)
    assert events == ["fingerprints cancelled"]


@pytest.mark.asyncio
async def test_repeated_sync_keeps_wallet_stable(engine, transport):
    transport.detail.return_value = {"cardName": "Maria Souza"}
    patient = imported_patient()

    for _ in range(3):
        patient = (await engine.sync_one(patient)).updated_patient
        assert patient.wallet == "00010000000000042"

    transport.detail.assert_awaited_with("42")
    transport.fingerprints.assert_awaited_with("00010000000000042")


def test_duplicate_finger_codes_keep_first_entry():
    entries = to_digital_biometrics([
        FingerprintRecord(finger_code=6, biometry="FIRST"),
        FingerprintRecord(finger_code=6, biometry="SECOND"),
        FingerprintRecord(finger_code=2, biometry=""),
        FingerprintRecord(finger_code=2, biometry="RING"),
    ])

    assert [(e.finger, e.data) for e in entries] == [
        ("Polegar Direito", "FIRST"),
        ("Anelar Esquerdo", "RING"),
    ]


# Batch synchronization

@pytest.mark.asyncio
async def test_sync_all_isolates_failures_and_paces(engine, transport, sleeps):
    async def detail(query_id):
        if query_id == "2":
            raise DirectoryRequestFailed("Directory request failed: 500")
        return {"cardName": f"Patient {query_id}", "healthInsurer": 1, "cardNumber": query_id}

    transport.detail.side_effect = detail
    patients = [
        imported_patient(patient_id=i, name="", wallet=f"0001000000000000{i}") for i in (1, 2, 3)
    ]
    patients.append(Patient(id=4, name="Manual", wallet="00010000000000004"))

    results = await engine.sync_all(patients)

    assert [r.success for r in results] == [True, False, True]
    assert [r.updated_patient.name for r in results if r.success] == ["Patient 1", "Patient 3"]
    assert sleeps == [0.2, 0.2]
    assert transport.detail.await_count == 3


@pytest.mark.asyncio
async def test_sync_all_captures_unexpected_errors(engine, transport):
    engine.sync_one = AsyncMock(side_effect=[RuntimeError("bug"), await engine.sync_one(imported_patient(2))])

    results = await engine.sync_all([imported_patient(1), imported_patient(2)])

    assert [r.success for r in results] == [False, True]
    assert "bug" in results[0].message


@pytest.mark.asyncio
async def test_sync_all_without_imported_patients(engine, transport, sleeps):
    results = await engine.sync_all([Patient(id=1, name="Manual", wallet="1")])

    assert len(results) == 1
    assert results[0].success is False
    assert results[0].message == NOTHING_TO_SYNC
    assert sleeps == []
    transport.detail.assert_not_called()


@pytest.mark.asyncio
async def test_pacer_skips_sleep_when_disabled():
    sleep = AsyncMock()
    await FixedDelayPacer(0, sleep=sleep).wait()
    sleep.assert_not_called()
