import logging
import re

from sqlalchemy.exc import SQLAlchemyError

from activity_log import append_activity
from errors import ValidationError, NotFoundError, InvalidTransitionError
from models import db, Reminder, utcnow

logger = logging.getLogger(__name__)

REMINDER_TYPES = ('medication', 'appointment', 'activity', 'other')
PERIODS = ('AM', 'PM')

_TIME_RE = re.compile(r'^(\d{2}):(\d{2})$')


def _as_int(value, field):
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field} must be a number')


def to_24_hour(hour, minute, period):
    """(9, 5, 'PM') -> '21:05'. 12 AM is midnight (00), 12 PM is noon (12)."""
    hour = _as_int(hour, 'hour')
    minute = _as_int(minute, 'minute')
    period = str(period or '').upper()
    if not 1 <= hour <= 12:
        raise ValidationError('hour must be between 1 and 12')
    if not 0 <= minute <= 59:
        raise ValidationError('minute must be between 0 and 59')
    if period not in PERIODS:
        raise ValidationError('period must be AM or PM')

    if period == 'PM' and hour != 12:
        hour += 12
    elif period == 'AM' and hour == 12:
        hour = 0
    return f'{hour:02d}:{minute:02d}'


def parse_time(value):
    """Validate a 24h 'HH:MM' string and return (hour, minute)."""
    match = _TIME_RE.match(value or '')
    if not match:
        raise ValidationError('time must be in HH:MM 24-hour format')
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ValidationError('time must be in HH:MM 24-hour format')
    return hour, minute


def to_12_hour(value):
    """'21:05' -> (9, 5, 'PM')."""
    hour, minute = parse_time(value)
    period = 'PM' if hour >= 12 else 'AM'
    hour = hour % 12 or 12
    return hour, minute, period


def display_time(value):
    hour, minute, period = to_12_hour(value)
    return f'{hour:02d}:{minute:02d} {period}'


def create_reminder(patient_id, caregiver_id, data):
    title = (data.get('title') or '').strip()
    if not title:
        raise ValidationError('Please enter a reminder title')

    if data.get('time'):
        time = data['time']
        parse_time(time)
    elif data.get('hour') is not None:
        time = to_24_hour(data.get('hour'), data.get('minute', 0), data.get('period'))
    else:
        raise ValidationError('time or hour/minute/period required')

    reminder_type = data.get('type') or 'medication'
    if reminder_type not in REMINDER_TYPES:
        raise ValidationError(f'Invalid reminder type: {reminder_type}')

    reminder = Reminder(
        patient_id=patient_id,
        caregiver_id=caregiver_id,
        title=title,
        description=data.get('description') or '',
        type=reminder_type,
        time=time,
        display_time=display_time(time),
        frequency=data.get('frequency') or 'daily',
        is_active=True,
        is_completed=False,
    )
    db.session.add(reminder)
    db.session.commit()
    logger.info("Reminder created: %s for patient %s at %s", reminder.id, patient_id, time)
    return reminder


def get_reminder(reminder_id):
    """Fetch by id, soft-deleted reminders included."""
    reminder = db.session.get(Reminder, reminder_id)
    if reminder is None:
        raise NotFoundError('Reminder not found')
    return reminder


def list_active_reminders(patient_id):
    reminders = [
        r for r in Reminder.query.filter_by(patient_id=patient_id).all()
        if r.is_active is not False
    ]
    reminders.sort(key=lambda r: r.time)
    return reminders


def complete_reminder(reminder_id, patient_id):
    """
    Mark a reminder done and log a `reminder_completed` activity.

    Completing an already-completed reminder changes nothing and logs
    nothing, so completion counts in the activity history stay one per
    reminder. Returns (reminder, activity_id); activity_id is None when no
    entry was written.
    """
    reminder = get_reminder(reminder_id)
    if reminder.patient_id != patient_id:
        raise NotFoundError('Reminder not found')
    if reminder.is_active is False:
        raise InvalidTransitionError('Reminder has been deleted')
    if reminder.is_completed:
        logger.info("Reminder %s already completed, skipping", reminder_id)
        return reminder, None

    reminder.is_completed = True
    reminder.completed_at = utcnow()
    db.session.commit()

    activity_id = None
    try:
        activity_id = append_activity(
            patient_id, 'reminder_completed', 'Reminder Completed',
            {'reminderId': reminder.id, 'reminderTitle': reminder.title},
        )
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to log completion of reminder %s", reminder_id)

    logger.info("Reminder marked as completed: %s", reminder_id)
    return reminder, activity_id


def soft_delete_reminder(reminder_id):
    reminder = get_reminder(reminder_id)
    if reminder.is_active is False:
        return reminder
    reminder.is_active = False
    reminder.deleted_at = utcnow()
    db.session.commit()
    logger.info("Reminder deleted: %s", reminder_id)
    return reminder
