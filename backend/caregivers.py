import logging

from fallbacks import first_of
from models import db, Patient, CaregiverRelation

logger = logging.getLogger(__name__)

_UNLOADED = object()


def _distinct(ids):
    seen = []
    for caregiver_id in ids or []:
        if caregiver_id and caregiver_id not in seen:
            seen.append(caregiver_id)
    return seen


def from_assigned_caregivers(lookup):
    patient = lookup['patient']
    if patient is None:
        return []
    return _distinct(patient.assigned_caregivers)


def from_active_relations(lookup):
    relations = CaregiverRelation.query.filter_by(
        patient_id=lookup['patient_id'], status='active'
    ).all()
    caregiver_ids = _distinct(r.caregiver_id for r in relations)
    if caregiver_ids:
        logger.info("Resolved caregivers for %s from relations: %s", lookup['patient_id'], caregiver_ids)
    return caregiver_ids


# Denormalized list first, relation table as the self-healing fallback
CAREGIVER_SOURCES = [from_assigned_caregivers, from_active_relations]


def resolve_caregivers(patient_id, patient=_UNLOADED):
    """
    Return the distinct caregiver ids to notify for a patient, possibly empty.

    Pass `patient` when the caller already loaded the record; a missing
    patient document (None) is treated like one with no caregivers.
    """
    if patient is _UNLOADED:
        patient = db.session.get(Patient, patient_id)
    lookup = {'patient_id': patient_id, 'patient': patient}
    caregiver_ids = first_of(CAREGIVER_SOURCES, lookup, default=[])
    if not caregiver_ids:
        logger.warning("No caregivers found for patient %s", patient_id)
    return caregiver_ids


def patients_for_caregiver(caregiver_id):
    """Patients whose caregiver resolution includes `caregiver_id`."""
    return [
        p for p in Patient.query.order_by(Patient.id).all()
        if caregiver_id in resolve_caregivers(p.id, p)
    ]
