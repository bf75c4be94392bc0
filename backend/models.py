from flask_sqlalchemy import SQLAlchemy
from datetime import datetime, timezone
from uuid import uuid4

db = SQLAlchemy()


def new_id():
    return uuid4().hex


def utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value is not None else None


class User(db.Model):
    id = db.Column(db.String(32), primary_key=True, default=new_id)
    username = db.Column(db.String(80), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    user_type = db.Column(db.String(20), nullable=False) # 'caregiver' or 'patient'
    created_at = db.Column(db.DateTime, default=utcnow)

    def __repr__(self):
        return f'<User {self.username}>'


class Patient(db.Model):
    __tablename__ = 'patients'

    # Same id as the patient's User account
    id = db.Column(db.String(32), primary_key=True)
    full_name = db.Column(db.String(120))
    name = db.Column(db.String(120))
    display_name = db.Column(db.String(120))
    # Denormalized copy of the caregiver links, may lag behind the relations table
    assigned_caregivers = db.Column(db.JSON)
    sos_settings = db.Column(db.JSON)
    emergency_contacts = db.Column(db.JSON)

    def to_dict(self):
        return {
            'id': self.id,
            'fullName': self.full_name,
            'name': self.name,
            'displayName': self.display_name,
            'assignedCaregivers': list(self.assigned_caregivers or []),
            'sosSettings': self.sos_settings,
            'emergencyContacts': self.emergency_contacts or [],
        }


class CaregiverRelation(db.Model):
    __tablename__ = 'patient_caregiver_relations'

    id = db.Column(db.String(32), primary_key=True, default=new_id)
    patient_id = db.Column(db.String(32), nullable=False, index=True)
    caregiver_id = db.Column(db.String(32))
    status = db.Column(db.String(20), nullable=False, default='pending') # active, inactive, pending
    created_at = db.Column(db.DateTime, default=utcnow)


class Reminder(db.Model):
    __tablename__ = 'reminders'

    id = db.Column(db.String(32), primary_key=True, default=new_id)
    patient_id = db.Column(db.String(32), nullable=False, index=True)
    caregiver_id = db.Column(db.String(32))
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default='')
    type = db.Column(db.String(20), nullable=False, default='medication')
    time = db.Column(db.String(5), nullable=False) # HH:MM, 24h
    display_time = db.Column(db.String(20))
    frequency = db.Column(db.String(20), default='daily')
    is_active = db.Column(db.Boolean, default=True)
    is_completed = db.Column(db.Boolean, default=False)
    completed_at = db.Column(db.DateTime, nullable=True)
    deleted_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'patientId': self.patient_id,
            'caregiverId': self.caregiver_id,
            'title': self.title,
            'description': self.description,
            'type': self.type,
            'time': self.time,
            'displayTime': self.display_time,
            'frequency': self.frequency,
            'isActive': self.is_active,
            'isCompleted': self.is_completed,
            'completedAt': _iso(self.completed_at),
            'deletedAt': _iso(self.deleted_at),
            'createdAt': _iso(self.created_at),
        }


class Activity(db.Model):
    __tablename__ = 'activities'

    id = db.Column(db.String(32), primary_key=True, default=new_id)
    patient_id = db.Column(db.String(32), nullable=False, index=True)
    type = db.Column(db.String(40), nullable=False) # reminder_completed, sos_triggered, ...
    title = db.Column(db.String(200), nullable=False)
    meta = db.Column('metadata', db.JSON, nullable=True)
    timestamp = db.Column(db.DateTime, default=utcnow)
    is_deleted = db.Column(db.Boolean, default=False)

    def to_dict(self):
        return {
            'id': self.id,
            'patientId': self.patient_id,
            'type': self.type,
            'title': self.title,
            'metadata': self.meta,
            'timestamp': _iso(self.timestamp),
            'isDeleted': self.is_deleted,
        }


class LocationRecord(db.Model):
    __tablename__ = 'gps_locations'

    id = db.Column(db.String(32), primary_key=True, default=new_id)
    patient_id = db.Column(db.String(32), nullable=False, index=True)
    latitude = db.Column(db.Float, nullable=False)
    longitude = db.Column(db.Float, nullable=False)
    accuracy = db.Column(db.Float, nullable=True)
    timestamp = db.Column(db.DateTime, default=utcnow)
    is_deleted = db.Column(db.Boolean, default=False)

    def to_dict(self):
        return {
            'id': self.id,
            'patientId': self.patient_id,
            'latitude': self.latitude,
            'longitude': self.longitude,
            'accuracy': self.accuracy,
            'timestamp': _iso(self.timestamp),
            'isDeleted': self.is_deleted,
        }


class AlertPayload:
    """Columns shared by the patient-scoped alerts and the global alert log."""
    id = db.Column(db.String(32), primary_key=True, default=new_id)
    patient_id = db.Column(db.String(32), nullable=False, index=True)
    patient_name = db.Column(db.String(120), nullable=False)
    timestamp = db.Column(db.DateTime, default=utcnow)
    status = db.Column(db.String(20), default='active') # active, resolved
    type = db.Column(db.String(20), default='sos')
    severity = db.Column(db.String(20), default='critical')
    message = db.Column(db.String(200), nullable=False)
    caregiver_ids = db.Column(db.JSON, nullable=False)
    location = db.Column(db.JSON, nullable=True)

    @classmethod
    def from_payload(cls, payload):
        return cls(
            patient_id=payload['patientId'],
            patient_name=payload['patientName'],
            timestamp=payload['timestamp'],
            status=payload['status'],
            type=payload['type'],
            severity=payload['severity'],
            message=payload['message'],
            caregiver_ids=list(payload['caregiverIds']),
            location=payload.get('location'),
        )

    def to_dict(self):
        return {
            'id': self.id,
            'patientId': self.patient_id,
            'patientName': self.patient_name,
            'timestamp': _iso(self.timestamp),
            'status': self.status,
            'type': self.type,
            'severity': self.severity,
            'message': self.message,
            'caregiverIds': list(self.caregiver_ids or []),
            'location': self.location,
        }


class SOSAlert(AlertPayload, db.Model):
    __tablename__ = 'sos_alerts'


class AlertLog(AlertPayload, db.Model):
    __tablename__ = 'alert_logs'
