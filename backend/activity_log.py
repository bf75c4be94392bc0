import logging

from models import db, Activity

logger = logging.getLogger(__name__)


def append_activity(patient_id, activity_type, title, metadata=None):
    """Append an activity entry and return its id. Store errors propagate."""
    activity = Activity(
        patient_id=patient_id,
        type=activity_type,
        title=title,
        meta=metadata,
        is_deleted=False,
    )
    db.session.add(activity)
    db.session.commit()
    logger.info("Activity logged: %s (%s) for patient %s", activity.id, activity_type, patient_id)
    return activity.id


def activity_history(patient_id, limit=50):
    activities = Activity.query.filter_by(patient_id=patient_id, is_deleted=False).all()
    activities.sort(key=lambda a: a.timestamp, reverse=True)
    return activities[:limit]
