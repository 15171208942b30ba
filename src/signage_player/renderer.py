"""
Display state and a text renderer for the signage player.

Real screens draw pixels; this module decides *what* is on screen and
describes it as text, which is what the console player prints. Items of an
unrecognized type render as nothing.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Optional

from signage_common.logger import setup_logger

from .models import ContentType, PlaylistItem, parse_timestamp

logger = setup_logger(__name__)

DEFAULT_TICKER_TEXT = "Welcome to our store! Ask about our specials."


class DisplayMode(Enum):
    """What the screen is showing."""
    PAIRING = "pairing"   # Pairing code, device not assigned
    IDLE = "idle"         # Assigned, nothing eligible right now
    PLAYING = "playing"   # A playlist item


@dataclass(frozen=True)
class DisplayState:
    """Everything the rendering layer needs for one frame."""

    mode: DisplayMode
    device_id: str = ''
    pairing_code: str = ''
    item: Optional[PlaylistItem] = None

    @property
    def item_id(self) -> Optional[str]:
        return self.item.id if self.item else None


def format_countdown(target: str, now: datetime) -> str:
    """
    Remaining time until target as 'Dd HH:MM:SS'.

    Args:
        target: 'YYYY-MM-DDTHH:MM' local time from the editor
        now: Current local time

    Returns:
        Countdown text; '00d 00:00:00' once the target has passed
    """
    moment = None
    try:
        moment = datetime.fromisoformat(target) if target else None
    except ValueError:
        parsed = parse_timestamp(target)
        moment = parsed.astimezone().replace(tzinfo=None) if parsed else None

    if moment is None:
        return ''
    if moment.tzinfo is not None:
        moment = moment.astimezone().replace(tzinfo=None)

    remaining = int((moment - now).total_seconds())
    if remaining < 0:
        remaining = 0

    days, rest = divmod(remaining, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{days:02d}d {hours:02d}:{minutes:02d}:{seconds:02d}"


def _render_image(item: PlaylistItem, now: datetime) -> str:
    return f"[image] {item.url}" if item.url else ''


def _render_video(item: PlaylistItem, now: datetime) -> str:
    return f"[video] {item.url}" if item.url else ''


def _render_pdf(item: PlaylistItem, now: datetime) -> str:
    return f"[document] {item.url}" if item.url else ''


def _render_qr(item: PlaylistItem, now: datetime) -> str:
    lines = [text for text in (item.text, item.sub_text) if text]
    lines.append(f"[qr] {item.qr_link}")
    return "\n".join(lines)


def _render_countdown(item: PlaylistItem, now: datetime) -> str:
    title = item.text or "Countdown"
    return f"{title}\n{format_countdown(item.target_date, now)}".rstrip()


def _render_weather(item: PlaylistItem, now: datetime) -> str:
    condition = item.weather_condition or 'sunny'
    parts = [f"[weather:{condition}]"]
    if item.text:
        parts.append(item.text)
    if item.sub_text:
        parts.append(item.sub_text)
    return " ".join(parts)


def _render_ticker(item: PlaylistItem, now: datetime) -> str:
    return item.text or DEFAULT_TICKER_TEXT


RENDERERS: Dict[ContentType, Callable[[PlaylistItem, datetime], str]] = {
    ContentType.IMAGE: _render_image,
    ContentType.VIDEO: _render_video,
    ContentType.PDF: _render_pdf,
    ContentType.QR: _render_qr,
    ContentType.COUNTDOWN: _render_countdown,
    ContentType.WEATHER: _render_weather,
    ContentType.TICKER: _render_ticker,
}


def render_item(item: PlaylistItem, now: datetime) -> str:
    """
    Describe a playlist item.

    Returns:
        Text for the item, or '' (blank screen) for an unknown type
    """
    content_type = item.content_type
    if content_type is None:
        logger.debug("Unknown content type %r on item %s, rendering blank", item.type, item.id)
        return ''
    return RENDERERS[content_type](item, now)


def render(state: DisplayState, now: datetime) -> str:
    """Describe a whole frame."""
    if state.mode == DisplayMode.PAIRING:
        return (
            "Pair this Screen\n"
            f"Enter code: {state.pairing_code}\n"
            f"Device ID: {state.device_id}"
        )
    if state.mode == DisplayMode.IDLE or state.item is None:
        return ''
    return render_item(state.item, now)


class ConsoleRenderer:
    """Logs each new frame and keeps a wall-clock overlay."""

    def __init__(self, echo: Callable[[str], None] = print):
        self._echo = echo
        self._last_frame: Optional[str] = None
        self._last_state: Optional[DisplayState] = None
        self.clock_text = ''

    def show(self, state: DisplayState, now: datetime) -> str:
        """Render state; prints only when the frame changed."""
        frame = render(state, now)
        if frame != self._last_frame or state != self._last_state:
            self._last_frame = frame
            self._last_state = state
            header = f"--- {state.mode.value}" + (f" ({state.item_id})" if state.item_id else "")
            self._echo(header)
            if frame:
                self._echo(frame)
        return frame

    def tick(self, now: datetime) -> None:
        """Clock overlay update, called every clock interval."""
        text = now.strftime('%H:%M')
        if text != self.clock_text:
            self.clock_text = text
            logger.debug("Clock %s", text)
