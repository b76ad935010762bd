import logging
import os
from typing import List

from sqlalchemy.engine import Engine
from sqlalchemy import delete
from sqlmodel import create_engine, select, Session, SQLModel

from biosync.models import Patient, PatientRecord, patient_from_wire, patient_to_wire

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///patients.db")
engine = create_engine(DATABASE_URL, echo=os.getenv("DATABASE_ECHO", "").lower() == "true")


def create_db_and_tables(bind: Engine = engine) -> None:
    SQLModel.metadata.create_all(bind)


class PatientRepository:
    """
    Durable copy of the patient list.

    Writes always replace the whole list inside one transaction; there is no
    incremental update.
    """

    def __init__(self, bind: Engine = engine):
        self.bind = bind

    def load_all(self) -> List[Patient]:
        with Session(self.bind) as session:
            records = session.exec(select(PatientRecord).order_by(PatientRecord.id)).all()
            return [patient_from_wire(record.model_dump()) for record in records]

    def save_all(self, patients: List[Patient]) -> None:
        with Session(self.bind) as session:
            session.exec(delete(PatientRecord))
            for patient in patients:
                session.add(PatientRecord(**patient_to_wire(patient)))
            session.commit()
        logger.debug("Persisted %d patient(s)", len(patients))
