import logging

from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import create_access_token, jwt_required, get_jwt_identity
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.security import generate_password_hash, check_password_hash
from models import db, User, Patient, LocationRecord

from activity_log import activity_history
from caregivers import patients_for_caregiver
from errors import CareError, NotFoundError
from location import (
    LocationOptions, StaticLocationProvider, StoredLocationProvider, parse_fix_timestamp, location_history,
)
from reminders import (
    create_reminder, get_reminder, list_active_reminders, complete_reminder, soft_delete_reminder,
)
from sos import (
    trigger_sos, get_sos_settings, save_sos_settings, get_emergency_contacts, save_emergency_contacts,
    patient_alerts, recent_alerts_for_caregiver,
)

logger = logging.getLogger(__name__)

api = Blueprint('api', __name__)


@api.errorhandler(CareError)
def handle_care_error(error):
    return jsonify({'message': error.message}), error.status_code


@api.errorhandler(SQLAlchemyError)
def handle_store_error(error):
    db.session.rollback()
    logger.exception("Store operation failed")
    return jsonify({'message': 'Storage unavailable, please try again'}), 503


def _current_user():
    user = db.session.get(User, get_jwt_identity())
    if user is None:
        raise NotFoundError('User not found')
    return user


def _check_patient_access(user, patient_id):
    # Patients only see their own records; caregivers see any patient
    if user.user_type == 'patient' and user.id != patient_id:
        return jsonify({'message': 'Access denied'}), 403
    return None


@api.route('/')
def index():
    return jsonify({'message': 'Welcome to the Care SOS API!'}), 200

@api.route('/auth/register', methods=['POST'])
def register():
    data = request.get_json() or {}

    username = data.get('username')
    password = data.get('password')
    user_type = data.get('user_type') # 'caregiver' or 'patient'

    if not username or not password or not user_type:
        return jsonify({'message': 'Username, password, and user_type required'}), 400

    if user_type not in ['caregiver', 'patient']:
        return jsonify({'message': 'Invalid user_type'}), 400

    if User.query.filter_by(username=username).first():
        return jsonify({'message': 'Username already exists'}), 400

    hashed_password = generate_password_hash(password)
    new_user = User(username=username, password_hash=hashed_password, user_type=user_type)
    db.session.add(new_user)
    db.session.commit()
    logger.info("User created: %s (%s)", new_user.id, user_type)

    if user_type == 'patient':
        new_patient = Patient(
            id=new_user.id,
            full_name=data.get('full_name'),
            assigned_caregivers=[],
        )
        db.session.add(new_patient)
        db.session.commit()

    return jsonify({'message': 'User created successfully', 'user_id': new_user.id}), 201

@api.route('/auth/login', methods=['POST'])
def login():
    data = request.get_json() or {}

    username = data.get('username')
    password = data.get('password')

    user = User.query.filter_by(username=username).first()

    if user and check_password_hash(user.password_hash, password or ''):
        access_token = create_access_token(identity=user.id)
        return jsonify({'access_token': access_token, 'user_type': user.user_type, 'user_id': user.id}), 200

    logger.info("Login failed for username: %s", username)
    return jsonify({'message': 'Invalid credentials'}), 401

# --- SOS Endpoints ---

@api.route('/api/sos', methods=['POST'])
@jwt_required()
def send_sos():
    user = _current_user()
    if user.user_type != 'patient':
        return jsonify({'message': 'Only patients can trigger an SOS'}), 403

    data = request.get_json(silent=True) or {}
    patient_id = user.id
    config = current_app.config

    provider = None
    if get_sos_settings(patient_id).get('sendLocation', True):
        if data.get('latitude') is not None and data.get('longitude') is not None:
            provider = StaticLocationProvider(data)
        else:
            provider = StoredLocationProvider(current_app._get_current_object(), patient_id)

    max_wait_ms = config['SOS_LOCATION_WAIT_MS']
    options = LocationOptions(
        enable_high_accuracy=config['LOCATION_HIGH_ACCURACY'],
        timeout_ms=max_wait_ms,
        maximum_age_ms=config['LOCATION_MAX_AGE_MS'],
    )
    result = trigger_sos(patient_id, provider, max_wait_ms, options)

    message = 'Emergency alert sent to your caregivers'
    if result.alert.get('location'):
        message += ' with your location'
    return jsonify({
        'message': message,
        'alertId': result.alert_id,
        'alert': result.alert,
        'alertLogged': result.alert_logged,
    }), 201

@api.route('/api/alerts', methods=['GET'])
@jwt_required()
def get_alerts():
    user = _current_user()
    limit = request.args.get('limit', 10, type=int)

    if user.user_type == 'caregiver':
        alerts = recent_alerts_for_caregiver(user.id, limit)
    else:
        alerts = patient_alerts(user.id)[:limit]

    return jsonify([alert.to_dict() for alert in alerts]), 200

@api.route('/api/patients/<patient_id>/sos-alerts', methods=['GET'])
@jwt_required()
def get_patient_alerts(patient_id):
    denied = _check_patient_access(_current_user(), patient_id)
    if denied:
        return denied
    return jsonify([alert.to_dict() for alert in patient_alerts(patient_id)]), 200

@api.route('/api/patients/<patient_id>/sos-settings', methods=['GET'])
@jwt_required()
def get_patient_sos_settings(patient_id):
    denied = _check_patient_access(_current_user(), patient_id)
    if denied:
        return denied
    return jsonify(get_sos_settings(patient_id)), 200

@api.route('/api/patients/<patient_id>/sos-settings', methods=['PUT'])
@jwt_required()
def update_patient_sos_settings(patient_id):
    denied = _check_patient_access(_current_user(), patient_id)
    if denied:
        return denied
    settings = save_sos_settings(patient_id, request.get_json(silent=True))
    return jsonify({'message': 'SOS settings saved', 'sosSettings': settings}), 200

@api.route('/api/patients/<patient_id>/emergency-contacts', methods=['GET'])
@jwt_required()
def get_patient_emergency_contacts(patient_id):
    denied = _check_patient_access(_current_user(), patient_id)
    if denied:
        return denied
    return jsonify(get_emergency_contacts(patient_id)), 200

@api.route('/api/patients/<patient_id>/emergency-contacts', methods=['PUT'])
@jwt_required()
def update_patient_emergency_contacts(patient_id):
    denied = _check_patient_access(_current_user(), patient_id)
    if denied:
        return denied
    contacts = save_emergency_contacts(patient_id, request.get_json(silent=True))
    return jsonify({'message': 'Emergency contacts saved', 'emergencyContacts': contacts}), 200

@api.route('/api/wearable/location', methods=['POST'])
@jwt_required()
def receive_location():
    user = _current_user()
    data = request.get_json() or {}

    try:
        latitude = float(data['latitude'])
        longitude = float(data['longitude'])
        accuracy = float(data['accuracy']) if data.get('accuracy') is not None else None
    except (KeyError, TypeError, ValueError):
        return jsonify({'message': 'Latitude and longitude required'}), 400

    record = LocationRecord(
        patient_id=user.id,
        latitude=latitude,
        longitude=longitude,
        accuracy=accuracy,
        timestamp=parse_fix_timestamp(data.get('timestamp')),
    )
    db.session.add(record)
    db.session.commit()
    return jsonify({'message': 'Location saved', 'location': record.to_dict()}), 201

@api.route('/api/patients/<patient_id>/locations', methods=['GET'])
@jwt_required()
def get_patient_locations(patient_id):
    denied = _check_patient_access(_current_user(), patient_id)
    if denied:
        return denied
    limit = request.args.get('limit', 10, type=int)
    return jsonify([loc.to_dict() for loc in location_history(patient_id, limit)]), 200

# --- Caregiver/Patient Endpoints ---

@api.route('/api/patients', methods=['GET'])
@jwt_required()
def get_patients():
    user = _current_user()

    if user.user_type != 'caregiver':
        return jsonify({'message': 'Access denied'}), 403

    result = []
    for p in patients_for_caregiver(user.id):
        p_user = db.session.get(User, p.id)
        p_dict = p.to_dict()
        p_dict['username'] = p_user.username if p_user else None
        result.append(p_dict)

    return jsonify(result), 200

@api.route('/api/patients/<patient_id>/activities', methods=['GET'])
@jwt_required()
def get_activities(patient_id):
    denied = _check_patient_access(_current_user(), patient_id)
    if denied:
        return denied
    limit = request.args.get('limit', 50, type=int)
    return jsonify([a.to_dict() for a in activity_history(patient_id, limit)]), 200

# --- Reminder Endpoints ---

@api.route('/api/patients/<patient_id>/reminders', methods=['POST'])
@jwt_required()
def add_reminder(patient_id):
    user = _current_user()
    denied = _check_patient_access(user, patient_id)
    if denied:
        return denied

    reminder = create_reminder(patient_id, user.id, request.get_json() or {})
    return jsonify({'message': 'Reminder created successfully', 'reminder': reminder.to_dict()}), 201

@api.route('/api/patients/<patient_id>/reminders', methods=['GET'])
@jwt_required()
def get_reminders(patient_id):
    denied = _check_patient_access(_current_user(), patient_id)
    if denied:
        return denied
    return jsonify([r.to_dict() for r in list_active_reminders(patient_id)]), 200

@api.route('/api/reminders/<reminder_id>', methods=['GET'])
@jwt_required()
def get_single_reminder(reminder_id):
    reminder = get_reminder(reminder_id)
    denied = _check_patient_access(_current_user(), reminder.patient_id)
    if denied:
        return denied
    return jsonify(reminder.to_dict()), 200

@api.route('/api/reminders/<reminder_id>/complete', methods=['POST'])
@jwt_required()
def mark_reminder_done(reminder_id):
    user = _current_user()
    data = request.get_json(silent=True) or {}

    if user.user_type == 'patient':
        patient_id = user.id
    else:
        patient_id = data.get('patientId') or get_reminder(reminder_id).patient_id

    reminder, activity_id = complete_reminder(reminder_id, patient_id)
    return jsonify({
        'message': 'Reminder marked as completed',
        'reminder': reminder.to_dict(),
        'activityId': activity_id,
    }), 200

@api.route('/api/reminders/<reminder_id>', methods=['DELETE'])
@jwt_required()
def delete_reminder(reminder_id):
    user = _current_user()
    reminder = get_reminder(reminder_id)
    denied = _check_patient_access(user, reminder.patient_id)
    if denied:
        return denied

    soft_delete_reminder(reminder_id)
    return jsonify({'message': 'Reminder deleted'}), 200
