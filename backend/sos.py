"""
SOS alert dispatch.

A trigger looks up the patient's location (bounded, best-effort) while it
resolves the caregivers to notify, then writes one alert payload twice:
to the patient's own alerts, which must succeed, and to the global alert
log behind the caregiver dashboards, which may fail without failing the SOS.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from activity_log import append_activity
from caregivers import resolve_caregivers
from errors import ValidationError, NotFoundError
from fallbacks import first_of
from location import acquire_location, DEFAULT_MAX_WAIT_MS
from models import db, Patient, SOSAlert, AlertLog, new_id, utcnow

logger = logging.getLogger(__name__)

DEFAULT_PATIENT_NAME = 'Patient'

DEFAULT_SOS_SETTINGS = {
    'enableSOS': True,
    'requireConfirmation': True,
    'sendLocation': True,
    'sendNotification': True,
    'sendMessage': False,
    'vibrationPattern': True,
    'soundAlert': True,
}

def _name_field(field):
    def source(patient):
        if patient is None:
            return None
        return (getattr(patient, field) or '').strip()
    return source


PATIENT_NAME_SOURCES = [_name_field('full_name'), _name_field('name'), _name_field('display_name')]


@dataclass
class DispatchResult:
    alert_id: str
    alert: dict
    alert_log_id: Optional[str] = None
    alert_log_error: Optional[str] = None

    @property
    def alert_logged(self):
        return self.alert_log_error is None


def resolve_patient_name(patient):
    return first_of(PATIENT_NAME_SOURCES, patient, default=DEFAULT_PATIENT_NAME)


def load_patient(patient_id):
    return db.session.get(Patient, patient_id)


def _existing_patient(patient_id):
    patient = load_patient(patient_id)
    if patient is None:
        raise NotFoundError('Patient not found')
    return patient


def get_sos_settings(patient_id, patient=None):
    patient = patient or load_patient(patient_id)
    settings = dict(DEFAULT_SOS_SETTINGS)
    if patient is not None and patient.sos_settings:
        settings.update(patient.sos_settings)
    return settings


def save_sos_settings(patient_id, changes):
    """Merge `changes` into the stored settings and return the effective settings."""
    if not isinstance(changes, dict):
        raise ValidationError('SOS settings must be an object')
    unknown = sorted(set(changes) - set(DEFAULT_SOS_SETTINGS))
    if unknown:
        raise ValidationError(f"Unknown SOS settings: {', '.join(unknown)}")
    for key, value in changes.items():
        if not isinstance(value, bool):
            raise ValidationError(f'{key} must be true or false')

    patient = _existing_patient(patient_id)
    stored = dict(patient.sos_settings or {})
    stored.update(changes)
    patient.sos_settings = stored
    db.session.commit()
    logger.info("SOS settings saved for patient %s", patient_id)
    return get_sos_settings(patient_id, patient)


def get_emergency_contacts(patient_id):
    patient = load_patient(patient_id)
    if patient is None or not isinstance(patient.emergency_contacts, list):
        return []
    return patient.emergency_contacts


def _clean_contact(contact):
    if not isinstance(contact, dict):
        raise ValidationError('Each emergency contact must be an object')
    name = contact.get('name')
    phone = contact.get('phone')
    relation = contact.get('relation') or ''
    if not isinstance(name, str) or not name.strip():
        raise ValidationError('Emergency contact name is required')
    if not isinstance(phone, str) or not phone.strip():
        raise ValidationError('Emergency contact phone is required')
    if not isinstance(relation, str):
        raise ValidationError('Emergency contact relation must be text')
    return {
        'id': str(contact.get('id') or new_id()),
        'name': name.strip(),
        'phone': phone.strip(),
        'relation': relation.strip(),
    }


def save_emergency_contacts(patient_id, contacts):
    """Replace the patient's emergency contacts; all entries are checked before anything is written."""
    if not isinstance(contacts, list):
        raise ValidationError('Emergency contacts must be a list')
    cleaned = [_clean_contact(contact) for contact in contacts]

    patient = _existing_patient(patient_id)
    patient.emergency_contacts = cleaned
    db.session.commit()
    logger.info("Saved %d emergency contacts for patient %s", len(cleaned), patient_id)
    return cleaned


def build_alert_payload(patient_id, patient_name, caregiver_ids, location=None):
    payload = {
        'patientId': patient_id,
        'patientName': patient_name,
        'timestamp': utcnow(),
        'status': 'active',
        'type': 'sos',
        'severity': 'critical',
        'message': f'{patient_name} has triggered an emergency SOS alert',
        'caregiverIds': list(caregiver_ids),
    }
    if location is not None:
        payload['location'] = location.to_dict()
    return payload


def write_patient_alert(payload):
    alert = SOSAlert.from_payload(payload)
    db.session.add(alert)
    db.session.commit()
    return alert


def write_alert_log(payload):
    log_entry = AlertLog.from_payload(payload)
    db.session.add(log_entry)
    db.session.commit()
    return log_entry


def trigger_sos(patient_id, location_provider=None, max_wait_ms=None, options=None):
    """
    Create an SOS alert for `patient_id` and return a DispatchResult.

    Errors reading the patient or writing the patient-scoped alert propagate.
    A failed global log write is reported on the result instead.
    """
    max_wait_ms = DEFAULT_MAX_WAIT_MS if max_wait_ms is None else max_wait_ms
    logger.info("SOS triggered by patient %s", patient_id)

    executor = ThreadPoolExecutor(max_workers=1)
    try:
        pending_location = executor.submit(acquire_location, location_provider, max_wait_ms, options)

        patient = load_patient(patient_id)
        caregiver_ids = resolve_caregivers(patient_id, patient)
        patient_name = resolve_patient_name(patient)

        location = pending_location.result()
    finally:
        # On a lookup error the location worker is left to run out its own deadline
        executor.shutdown(wait=False)

    payload = build_alert_payload(patient_id, patient_name, caregiver_ids, location)

    alert = write_patient_alert(payload)
    result = DispatchResult(alert_id=alert.id, alert=alert.to_dict())
    logger.info(
        "Alert saved for patient %s, alert id %s, caregivers notified: %s",
        patient_id, alert.id, caregiver_ids,
    )

    try:
        result.alert_log_id = write_alert_log(payload).id
    except SQLAlchemyError as e:
        db.session.rollback()
        result.alert_log_error = str(e)
        logger.exception("Alert %s saved but the global alert log write failed", alert.id)

    metadata = {'alertId': alert.id, 'notifiedCaregiverCount': len(caregiver_ids)}
    if location is not None:
        metadata.update(
            locationLatitude=location.latitude,
            locationLongitude=location.longitude,
            locationAccuracy=location.accuracy,
        )
    try:
        append_activity(patient_id, 'sos_triggered', 'Emergency SOS Triggered', metadata)
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to log SOS activity for alert %s", alert.id)

    return result


def patient_alerts(patient_id):
    alerts = SOSAlert.query.filter_by(patient_id=patient_id).all()
    alerts.sort(key=lambda a: a.timestamp, reverse=True)
    return alerts


def recent_alerts_for_caregiver(caregiver_id, limit=10):
    # caregiverIds is a JSON list, so membership is checked here rather than in SQL
    alerts = [
        a for a in AlertLog.query.filter_by(type='sos').all()
        if caregiver_id in (a.caregiver_ids or [])
    ]
    alerts.sort(key=lambda a: a.timestamp, reverse=True)
    return alerts[:limit]
