import logging
from typing import List

from contextlib import asynccontextmanager
from fastapi import FastAPI, Depends, HTTPException, Request

from biosync.biometrics import infer_image_src, validate_editable
from biosync.config import DirectorySettings, configure_logging
from biosync.database import PatientRepository, create_db_and_tables
from biosync.directory import BeneficiaryDirectory
from biosync.errors import (
    DirectoryRequestFailed,
    DirectoryTimeout,
    InvalidPayload,
    MissingRequiredField,
    NotFound,
)
from biosync.fingers import FINGER_LABELS
from biosync.models import (
    Beneficiary,
    BeneficiarySearchParams,
    BiometricPayload,
    DigitalBiometric,
    Patient,
    SyncResult,
)
from biosync.reconciliation import FixedDelayPacer, ReconciliationEngine
from biosync.store import PatientStore
from biosync.transport import DirectoryTransport

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    create_db_and_tables()

    settings = DirectorySettings.from_env()
    store = PatientStore(PatientRepository())
    store.load()

    async with DirectoryTransport(settings) as transport:
        directory = BeneficiaryDirectory(transport, request_timeout=settings.timeout_seconds)
        app.state.store = store
        app.state.engine = ReconciliationEngine(directory, FixedDelayPacer(settings.sync_interval_seconds))
        logger.info("Directory client ready for %s", settings.base_url or "<unset base url>")
        yield
    logger.info("App shutting down.")


app = FastAPI(lifespan=lifespan)


def get_store(request: Request) -> PatientStore:
    return request.app.state.store


def get_engine(request: Request) -> ReconciliationEngine:
    return request.app.state.engine


def directory_error(e: DirectoryRequestFailed) -> HTTPException:
    status_code = 504 if isinstance(e, DirectoryTimeout) else 502
    return HTTPException(status_code=status_code, detail=str(e))


# Patients
@app.get("/patients", response_model=List[Patient])
async def list_patients(store: PatientStore = Depends(get_store)):
    return store.load_all()


@app.post("/patients", response_model=Patient)
async def create_patient(draft: Patient, store: PatientStore = Depends(get_store)):
    """
    Create a manually entered patient. Any id in the body is ignored.
    """
    return store.create(draft)


@app.put("/patients/{patient_id}", response_model=Patient)
async def update_patient(patient_id: int, patient: Patient, store: PatientStore = Depends(get_store)):
    patient = patient.model_copy(update={"id": patient_id})
    try:
        store.update(patient)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return patient


@app.delete("/patients/{patient_id}")
async def delete_patient(patient_id: int, store: PatientStore = Depends(get_store)):
    try:
        store.delete(patient_id)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"message": f"Patient {patient_id} removed."}


# Hand-edited biometrics
@app.put("/patients/{patient_id}/facial-biometric", response_model=Patient)
async def edit_facial_biometric(
    patient_id: int,
    payload: BiometricPayload,
    store: PatientStore = Depends(get_store),
):
    try:
        data = validate_editable(payload.data)
        patient = store.get(patient_id)
    except InvalidPayload as e:
        raise HTTPException(status_code=422, detail=str(e))
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))

    patient = patient.model_copy(update={"facial_biometric": data})
    store.update(patient)
    return patient


@app.put("/patients/{patient_id}/digital-biometrics/{finger}", response_model=Patient)
async def edit_digital_biometric(
    patient_id: int,
    finger: str,
    payload: BiometricPayload,
    store: PatientStore = Depends(get_store),
):
    """
    Replace the fingerprint stored for one finger, or add it if the patient
    has none for that finger yet.
    """
    if finger not in FINGER_LABELS.values():
        raise HTTPException(status_code=400, detail=f"Unknown finger '{finger}'.")
    try:
        data = validate_editable(payload.data)
        patient = store.get(patient_id)
    except InvalidPayload as e:
        raise HTTPException(status_code=422, detail=str(e))
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))

    if not data:
        raise HTTPException(status_code=422, detail="Fingerprint payload is empty.")

    edited = DigitalBiometric(finger=finger, data=data)
    if any(entry.finger == finger for entry in patient.digital_biometrics):
        entries = [edited if entry.finger == finger else entry for entry in patient.digital_biometrics]
    else:
        entries = patient.digital_biometrics + [edited]
    patient = patient.model_copy(update={"digital_biometrics": entries})
    store.update(patient)
    return patient


@app.get("/patients/{patient_id}/facial-biometric/src")
async def facial_biometric_src(patient_id: int, store: PatientStore = Depends(get_store)):
    try:
        patient = store.get(patient_id)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    if not patient.facial_biometric:
        raise HTTPException(status_code=404, detail="Patient has no facial biometric.")
    return {"src": infer_image_src(patient.facial_biometric)}


@app.get("/fingers")
async def list_fingers():
    return [{"code": code, "label": label} for code, label in FINGER_LABELS.items()]


# Directory
@app.post("/beneficiaries/search", response_model=List[Beneficiary])
async def search_beneficiaries(
    params: BeneficiarySearchParams,
    engine: ReconciliationEngine = Depends(get_engine),
):
    try:
        return await engine.search_beneficiaries(params)
    except MissingRequiredField as e:
        raise HTTPException(status_code=400, detail=str(e))
    except DirectoryRequestFailed as e:
        raise directory_error(e)


@app.post("/imports/cards/{card_number}", response_model=Patient)
async def import_by_card(
    card_number: str,
    store: PatientStore = Depends(get_store),
    engine: ReconciliationEngine = Depends(get_engine),
):
    try:
        draft = await engine.import_from_card_search(card_number)
    except MissingRequiredField as e:
        raise HTTPException(status_code=400, detail=str(e))
    except DirectoryRequestFailed as e:
        raise directory_error(e)
    return store.create(draft)


@app.post("/imports/beneficiaries", response_model=Patient)
async def import_beneficiary(
    beneficiary: Beneficiary,
    store: PatientStore = Depends(get_store),
    engine: ReconciliationEngine = Depends(get_engine),
):
    draft = await engine.import_from_beneficiary(beneficiary)
    return store.create(draft)


# Synchronization
@app.post("/sync/patients/{patient_id}", response_model=SyncResult)
async def sync_patient(
    patient_id: int,
    store: PatientStore = Depends(get_store),
    engine: ReconciliationEngine = Depends(get_engine),
):
    try:
        patient = store.get(patient_id)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))

    result = await engine.sync_one(patient)
    store.apply_sync_results([result])
    return result


@app.post("/sync/patients")
async def sync_all_patients(
    store: PatientStore = Depends(get_store),
    engine: ReconciliationEngine = Depends(get_engine),
):
    """
    Synchronize every imported patient, then write all successful results
    in a single pass.
    """
    results = await engine.sync_all(store.load_all())
    updated = store.apply_sync_results(results)
    return {
        "updated": updated,
        "failed": sum(1 for result in results if not result.success),
        "results": [result.model_dump() for result in results],
    }
