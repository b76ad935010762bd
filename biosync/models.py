from sqlmodel import Field, SQLModel, Column, JSON
from typing import Any, Dict, List, Optional


class DigitalBiometric(SQLModel):
    finger: str
    data: str


class Patient(SQLModel):
    id: int = 0  # 0 until the store assigns one
    name: str = ""
    wallet: str = ""
    facial_biometric: str = ""
    digital_biometrics: List[DigitalBiometric] = []
    imported: bool = False


class PatientRecord(SQLModel, table=True):
    __tablename__ = "patient"

    id: int = Field(primary_key=True)  # Assigned by PatientStore, never by the database
    name: Optional[str] = None
    wallet: str = Field(default="", index=True)
    facial_biometric: str = ""
    digital_biometrics: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    imported: bool = False


class Beneficiary(SQLModel):
    name: str = ""
    health_insurer: str = ""
    card_number: str = ""
    complete_card_number: Optional[str] = None


class FingerprintRecord(SQLModel):
    finger_code: int = 0
    biometry: str = ""


class BeneficiarySearchParams(SQLModel):
    guarantor: str
    modality: Optional[str] = None
    proposal: Optional[str] = None
    contract: Optional[str] = None


class SyncResult(SQLModel):
    success: bool
    message: str
    updated_patient: Optional[Patient] = None


class BiometricPayload(SQLModel):
    data: str


def _first_non_empty(raw: Dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = raw.get(key)
        if value:
            return str(value)
    return ""


def patient_from_wire(raw: Dict[str, Any]) -> Patient:
    """
    Build a Patient from a stored row. Older rows may carry the name under a
    different key and may lack the biometric and import fields entirely.
    """
    return Patient(
        id=int(raw.get("id") or 0),
        name=_first_non_empty(raw, "name", "full_name", "fullName", "nome"),
        wallet=str(raw.get("wallet") or ""),
        facial_biometric=raw.get("facial_biometric") or "",
        digital_biometrics=[
            DigitalBiometric(finger=entry.get("finger", ""), data=entry.get("data", ""))
            for entry in raw.get("digital_biometrics") or []
        ],
        imported=bool(raw.get("imported")),
    )


def patient_to_wire(patient: Patient) -> Dict[str, Any]:
    return {
        "id": patient.id,
        "name": patient.name,
        "wallet": patient.wallet,
        "facial_biometric": patient.facial_biometric,
        "digital_biometrics": [
            {"finger": entry.finger, "data": entry.data} for entry in patient.digital_biometrics
        ],
        "imported": patient.imported,
    }
