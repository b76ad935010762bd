import logging
from typing import Iterable, List, Protocol

from biosync.errors import NotFound
from biosync.models import Patient, SyncResult

logger = logging.getLogger(__name__)


class PatientPersistence(Protocol):
    def load_all(self) -> List[Patient]: ...

    def save_all(self, patients: List[Patient]) -> None: ...


class PatientStore:
    """
    Authoritative in-memory list of patients.

    Every mutation rewrites the whole list through the persistence
    collaborator. There is no rollback: if the write fails the in-memory list
    keeps the change and the durable copy does not.
    """

    def __init__(self, persistence: PatientPersistence):
        self.persistence = persistence
        self._patients: List[Patient] = []

    def load(self) -> List[Patient]:
        self._patients = list(self.persistence.load_all())
        logger.info("Loaded %d patient(s)", len(self._patients))
        return self.load_all()

    def load_all(self) -> List[Patient]:
        return [patient.model_copy(deep=True) for patient in self._patients]

    def get(self, patient_id: int) -> Patient:
        for patient in self._patients:
            if patient.id == patient_id:
                return patient.model_copy(deep=True)
        raise NotFound(patient_id)

    def _next_id(self) -> int:
        return max((patient.id for patient in self._patients), default=0) + 1

    def _persist(self) -> None:
        self.persistence.save_all(self._patients)

    def create(self, draft: Patient) -> Patient:
        patient = draft.model_copy(update={"id": self._next_id()}, deep=True)
        self._patients.append(patient)
        self._persist()
        logger.info("Created patient %d (imported=%s)", patient.id, patient.imported)
        return patient.model_copy(deep=True)

    def update(self, patient: Patient) -> None:
        for index, existing in enumerate(self._patients):
            if existing.id == patient.id:
                self._patients[index] = patient.model_copy(deep=True)
                self._persist()
                return
        raise NotFound(patient.id)

    def delete(self, patient_id: int) -> None:
        remaining = [patient for patient in self._patients if patient.id != patient_id]
        if len(remaining) == len(self._patients):
            raise NotFound(patient_id)
        self._patients = remaining
        self._persist()
        logger.info("Deleted patient %d", patient_id)

    def apply_sync_results(self, results: Iterable[SyncResult]) -> int:
        """
        Fold successful sync results into the current list and persist once.

        Results are applied against the list as it is now, not as it was when
        the batch started, so patients removed in the meantime stay removed.
        Returns how many records were replaced.
        """
        updates = {
            result.updated_patient.id: result.updated_patient
            for result in results
            if result.success and result.updated_patient is not None
        }
        replaced = 0
        for index, existing in enumerate(self._patients):
            if existing.id in updates:
                self._patients[index] = updates[existing.id].model_copy(deep=True)
                replaced += 1
        if replaced:
            self._persist()
        skipped = len(updates) - replaced
        if skipped:
            logger.warning("Skipped %d sync result(s) for patients no longer in the store", skipped)
        return replaced
