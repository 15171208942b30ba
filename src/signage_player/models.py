"""
Data model for playlists and device registrations.

Documents arrive from the store as plain dictionaries with camelCase keys;
these dataclasses normalize them once so the scheduler never has to guess
about missing or malformed fields.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from signage_common.logger import setup_logger

logger = setup_logger(__name__)

DEFAULT_DURATION = 10  # seconds

WEEKDAY_KEYS = ('mon', 'tue', 'wed', 'thu', 'fri', 'sat', 'sun')


class ContentType(Enum):
    """Closed set of content kinds a playlist item can carry."""
    IMAGE = "image"
    VIDEO = "video"
    PDF = "pdf"
    QR = "widget_qr"
    COUNTDOWN = "widget_countdown"
    WEATHER = "widget_weather"
    TICKER = "widget_ticker"


def coerce_duration(value: Any, default: int = DEFAULT_DURATION) -> int:
    """
    Normalize a duration to a positive integer number of seconds.

    Args:
        value: Raw value from the document (int, float, numeric string or None)
        default: Used when value is missing, non-numeric or not positive

    Returns:
        Positive integer duration
    """
    if value is None or isinstance(value, bool):
        return default

    try:
        seconds = int(float(value))
    except (TypeError, ValueError):
        return default

    return seconds if seconds > 0 else default


def _blank_to_none(value: Any) -> Optional[str]:
    """The editor stores unset times as ''."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass
class PlaylistItem:
    """One schedulable unit of content (media or widget)."""

    id: str
    type: str
    active: bool = True
    duration: int = DEFAULT_DURATION
    schedule_days: Optional[Dict[str, Any]] = None
    schedule_start: Optional[str] = None
    schedule_end: Optional[str] = None

    # Type-specific payload
    url: str = ''
    text: str = ''
    sub_text: str = ''
    qr_link: str = ''
    target_date: str = ''
    weather_condition: str = ''

    # Presentation only; never consulted by scheduling
    styles: Dict[str, Any] = field(default_factory=dict)

    # Any other keys the admin side stored, kept for round-tripping
    extra: Dict[str, Any] = field(default_factory=dict)

    _KNOWN_KEYS = (
        'id', 'type', 'active', 'duration', 'scheduleDays', 'scheduleStart',
        'scheduleEnd', 'url', 'text', 'subText', 'qrLink', 'targetDate',
        'weatherCondition', 'styles',
    )

    @classmethod
    def from_dict(
        cls,
        data: Dict[str, Any],
        default_duration: int = DEFAULT_DURATION
    ) -> 'PlaylistItem':
        """
        Build an item from a stored playlist entry.

        Args:
            data: Entry dictionary as found in a location's 'content' list
            default_duration: Duration applied when the entry has none

        Returns:
            PlaylistItem with defaults filled in
        """
        styles = data.get('styles')
        return cls(
            id=str(data.get('id', '')),
            type=str(data.get('type', '')),
            active=data.get('active', True) is not False,
            duration=coerce_duration(data.get('duration'), default_duration),
            schedule_days=data.get('scheduleDays'),
            schedule_start=_blank_to_none(data.get('scheduleStart')),
            schedule_end=_blank_to_none(data.get('scheduleEnd')),
            url=data.get('url') or '',
            text=data.get('text') or '',
            sub_text=data.get('subText') or '',
            qr_link=data.get('qrLink') or '',
            target_date=data.get('targetDate') or '',
            weather_condition=data.get('weatherCondition') or '',
            styles=styles if isinstance(styles, dict) else {},
            extra={k: v for k, v in data.items() if k not in cls._KNOWN_KEYS},
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize back to the stored (camelCase) shape."""
        data = dict(self.extra)
        data.update({
            'id': self.id,
            'type': self.type,
            'active': self.active,
            'duration': self.duration,
            'scheduleStart': self.schedule_start or '',
            'scheduleEnd': self.schedule_end or '',
            'url': self.url,
            'text': self.text,
            'subText': self.sub_text,
            'qrLink': self.qr_link,
            'targetDate': self.target_date,
            'weatherCondition': self.weather_condition,
            'styles': dict(self.styles),
        })
        if self.schedule_days is not None:
            data['scheduleDays'] = dict(self.schedule_days)
        return data

    @property
    def content_type(self) -> Optional[ContentType]:
        """The item's ContentType, or None for an unrecognized type."""
        try:
            return ContentType(self.type)
        except ValueError:
            return None


def parse_playlist(
    content: Any,
    default_duration: int = DEFAULT_DURATION
) -> List[PlaylistItem]:
    """
    Parse a location's 'content' list into PlaylistItems.

    Non-dict entries are skipped. When two entries share an id, the first
    one wins and the duplicate is dropped.

    Args:
        content: Raw 'content' value from the location document
        default_duration: Duration for entries without one

    Returns:
        Items in play order
    """
    if not isinstance(content, list):
        if content is not None:
            logger.warning("Playlist content is not a list (%s), treating as empty",
                           type(content).__name__)
        return []

    items: List[PlaylistItem] = []
    seen_ids = set()

    for index, entry in enumerate(content):
        if not isinstance(entry, dict):
            logger.warning("Skipping playlist entry %d: not an object", index)
            continue

        item = PlaylistItem.from_dict(entry, default_duration)
        if item.id and item.id in seen_ids:
            logger.warning("Skipping duplicate playlist item id %s", item.id)
            continue

        seen_ids.add(item.id)
        items.append(item)

    return items


@dataclass
class Location:
    """A location and the playlist it owns."""

    id: str
    name: str = ''
    items: List[PlaylistItem] = field(default_factory=list)

    @classmethod
    def from_document(
        cls,
        location_id: str,
        data: Dict[str, Any],
        default_duration: int = DEFAULT_DURATION
    ) -> 'Location':
        """Build a Location from its store document ({name, content})."""
        return cls(
            id=location_id,
            name=str(data.get('name') or ''),
            items=parse_playlist(data.get('content'), default_duration),
        )

    def to_document(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'content': [item.to_dict() for item in self.items],
        }


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp (with optional trailing 'Z').

    Returns:
        Timezone-aware datetime (UTC assumed when naive), or None if unparseable
    """
    if not value or not isinstance(value, str):
        return None

    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(moment: datetime) -> str:
    """Format a datetime as ISO-8601 UTC with millisecond precision and 'Z'."""
    if moment.tzinfo is None:
        moment = moment.astimezone()
    utc = moment.astimezone(timezone.utc)
    return utc.strftime('%Y-%m-%dT%H:%M:%S.') + f"{utc.microsecond // 1000:03d}Z"


@dataclass
class DeviceRecord:
    """A device's registration document."""

    id: str
    pairing_code: str = ''
    last_seen: str = ''
    location_id: Optional[str] = None

    @classmethod
    def from_document(cls, device_id: str, data: Dict[str, Any]) -> 'DeviceRecord':
        """Build a record from {id, pairingCode, lastSeen, locationId?}."""
        location_id = data.get('locationId')
        return cls(
            id=str(data.get('id') or device_id),
            pairing_code=str(data.get('pairingCode') or ''),
            last_seen=str(data.get('lastSeen') or ''),
            location_id=str(location_id) if location_id else None,
        )

    def to_document(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'id': self.id,
            'pairingCode': self.pairing_code,
            'lastSeen': self.last_seen,
        }
        if self.location_id:
            data['locationId'] = self.location_id
        return data

    @property
    def last_seen_at(self) -> Optional[datetime]:
        return parse_timestamp(self.last_seen)

    @property
    def is_assigned(self) -> bool:
        return bool(self.location_id)
