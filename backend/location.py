"""
Best-effort location lookup for SOS alerts.

`acquire_location` races a provider callback against a timer and commits to
whichever settles first. It never raises: provider errors, malformed fixes
and timeouts all come back as ``None`` so an alert is never held up by GPS.
"""
import logging
import threading
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta, timezone
from typing import Optional

from errors import ValidationError
from models import LocationRecord

logger = logging.getLogger(__name__)

DEFAULT_MAX_WAIT_MS = 10000

# Device clocks drift; fixes further ahead of the server than this are refused
MAX_CLOCK_SKEW = timedelta(minutes=1)


@dataclass(frozen=True)
class LocationOptions:
    # Low accuracy, long timeout, stale fixes allowed: availability over precision
    enable_high_accuracy: bool = False
    timeout_ms: int = 10000
    maximum_age_ms: int = 300000


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float
    accuracy: Optional[float] = None

    @classmethod
    def from_position(cls, position):
        if isinstance(position, Location):
            return position
        if isinstance(position, dict):
            coords = position.get('coords', position)
            accuracy = coords.get('accuracy')
            return cls(
                latitude=float(coords['latitude']),
                longitude=float(coords['longitude']),
                accuracy=float(accuracy) if accuracy is not None else None,
            )
        raise TypeError(f'Unsupported position: {position!r}')

    def to_dict(self):
        return asdict(self)


def parse_fix_timestamp(value, now=None):
    """
    Turn a device-reported ISO 8601 timestamp into an aware UTC datetime.

    Naive values are taken as UTC and a trailing ``Z`` is accepted. A missing
    value means the fix was taken now. Unparseable and future-dated values
    raise ValidationError, since recording them would make an old fix look
    fresh to the SOS lookup.
    """
    now = now or datetime.now(timezone.utc)
    if value is None or value == '':
        return now
    if not isinstance(value, str):
        raise ValidationError('Timestamp must be an ISO 8601 string')

    text = value.strip()
    if text.endswith(('Z', 'z')):
        text = text[:-1] + '+00:00'
    try:
        timestamp = datetime.fromisoformat(text)
    except ValueError:
        raise ValidationError(f'Invalid timestamp: {value}')

    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    timestamp = timestamp.astimezone(timezone.utc)
    if timestamp > now + MAX_CLOCK_SKEW:
        raise ValidationError('Timestamp is in the future')
    return timestamp


def location_history(patient_id, limit=10):
    """Recorded fixes for a patient, latest first."""
    return (
        LocationRecord.query
        .filter_by(patient_id=patient_id, is_deleted=False)
        .order_by(LocationRecord.timestamp.desc())
        .limit(limit)
        .all()
    )


class LocationProvider:
    """
    Callback-style source of device coordinates.

    Implementations call exactly one of ``on_success(position)`` or
    ``on_error(error)`` at some point, possibly from another thread, possibly
    never. ``stop()`` asks the provider to drop any pending update.
    """

    def get_current_position(self, on_success, on_error, options):
        raise NotImplementedError

    def stop(self):
        pass


class StaticLocationProvider(LocationProvider):
    """Replays coordinates the device sent along with the request."""

    def __init__(self, position):
        self.position = position

    def get_current_position(self, on_success, on_error, options):
        on_success(self.position)


class StoredLocationProvider(LocationProvider):
    """Reads the patient's latest recorded fix, ignoring ones older than `maximum_age_ms`."""

    def __init__(self, app, patient_id):
        self.app = app
        self.patient_id = patient_id
        self._stopped = threading.Event()

    def get_current_position(self, on_success, on_error, options):
        worker = threading.Thread(
            target=self._lookup, args=(on_success, on_error, options), daemon=True
        )
        worker.start()

    def stop(self):
        self._stopped.set()

    def _lookup(self, on_success, on_error, options):
        try:
            with self.app.app_context():
                fix = None
                for record in location_history(self.patient_id, limit=1):
                    fix = (record.timestamp, Location(record.latitude, record.longitude, record.accuracy))
        except Exception as e:
            if not self._stopped.is_set():
                on_error(e)
            return

        if self._stopped.is_set():
            return
        if fix is None:
            on_error(LookupError(f'No recorded location for patient {self.patient_id}'))
            return

        recorded_at, location = fix
        # Stored as UTC wall-clock time, see parse_fix_timestamp
        if recorded_at.tzinfo is None:
            recorded_at = recorded_at.replace(tzinfo=timezone.utc)
        age = datetime.now(timezone.utc) - recorded_at
        if age > timedelta(milliseconds=options.maximum_age_ms):
            on_error(LookupError(f'Latest location is {age.total_seconds():.0f}s old'))
            return

        on_success(location)


class _Settlement:
    """First call to settle() wins; the rest are ignored."""

    def __init__(self):
        self._lock = threading.Lock()
        self._done = threading.Event()
        self.value = None

    def settle(self, value):
        with self._lock:
            if self._done.is_set():
                return False
            self.value = value
            self._done.set()
            return True

    def wait(self, timeout):
        return self._done.wait(timeout)


def acquire_location(provider, max_wait_ms=DEFAULT_MAX_WAIT_MS, options=None):
    """Return a Location, or None if the provider fails or misses the deadline."""
    if provider is None:
        return None
    options = options or LocationOptions()
    settlement = _Settlement()

    def on_timeout():
        if settlement.settle(None):
            logger.warning("Location request timed out after %sms", max_wait_ms)
            try:
                provider.stop()
            except Exception:
                logger.exception("Location provider failed to stop")

    timer = threading.Timer(max_wait_ms / 1000.0, on_timeout)
    timer.daemon = True

    def on_success(position):
        timer.cancel()
        try:
            location = Location.from_position(position)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Discarding malformed location %r: %s", position, e)
            location = None
        settlement.settle(location)

    def on_error(error):
        timer.cancel()
        if settlement.settle(None):
            logger.warning("Geolocation error: %s", error)

    timer.start()
    try:
        provider.get_current_position(on_success, on_error, options)
    except Exception as e:
        on_error(e)

    # The timer always settles; the extra second only covers a stalled timer thread
    if not settlement.wait(max_wait_ms / 1000.0 + 1.0):
        settlement.settle(None)
    timer.cancel()
    return settlement.value
