"""Performance events and the closed sequences built from them.

A recording is an ordered list of four event kinds: ``NoteOn``, ``NoteOff``,
``SustainOn`` and ``SustainOff``.  Each carries an integer millisecond
timestamp from a monotonic clock; note events also carry a pitch.

The persisted form of a sequence is a JSON list of plain dicts::

    [
        {"type": "noteOn", "note": 60, "timestamp": 0},
        {"type": "sustainOn", "timestamp": 100},
        {"type": "noteOff", "note": 60, "timestamp": 200},
        {"type": "sustainOff", "timestamp": 400}
    ]

A sequence is *closed* when every ``NoteOn`` has a later ``NoteOff`` for the
same pitch and the sustain pedal is up at the end.  :func:`close_events`
produces a closed copy of any event list; both the recorder and the player
use it so that dangling notes are healed the same way everywhere.
"""

import dataclasses
import json
import logging
import typing

import pianola.constants


logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class NoteOn:

	"""A key went down."""

	pitch: int
	timestamp: int

	type: typing.ClassVar[str] = "noteOn"


@dataclasses.dataclass(frozen=True)
class NoteOff:

	"""A key came up."""

	pitch: int
	timestamp: int

	type: typing.ClassVar[str] = "noteOff"


@dataclasses.dataclass(frozen=True)
class SustainOn:

	"""The sustain pedal went down."""

	timestamp: int

	type: typing.ClassVar[str] = "sustainOn"


@dataclasses.dataclass(frozen=True)
class SustainOff:

	"""The sustain pedal came up."""

	timestamp: int

	type: typing.ClassVar[str] = "sustainOff"


Event = typing.Union[NoteOn, NoteOff, SustainOn, SustainOff]

NOTE_EVENTS = (NoteOn, NoteOff)
SUSTAIN_EVENTS = (SustainOn, SustainOff)

_EVENT_TYPES: typing.Dict[str, typing.Type[typing.Any]] = {
	cls.type: cls for cls in (NoteOn, NoteOff, SustainOn, SustainOff)
}


def is_valid_pitch (pitch: typing.Any) -> bool:

	"""Return True for an integer pitch inside the instrument range."""

	return (
		isinstance(pitch, int)
		and not isinstance(pitch, bool)
		and pianola.constants.PITCH_MIN <= pitch <= pianola.constants.PITCH_MAX
	)


def event_to_dict (event: Event) -> typing.Dict[str, typing.Any]:

	"""Convert an event to its export dict."""

	data: typing.Dict[str, typing.Any] = {"type": event.type}

	if isinstance(event, NOTE_EVENTS):
		data["note"] = event.pitch

	data["timestamp"] = event.timestamp

	return data


def event_from_dict (data: typing.Mapping[str, typing.Any]) -> Event:

	"""Build an event from its export dict.

	Raises ``ValueError`` when the dict has an unknown type, a missing or
	non-integer timestamp, or a note outside the instrument range.
	"""

	if not isinstance(data, typing.Mapping):
		raise ValueError(f"Event must be a mapping, got {type(data).__name__}")

	event_type = data.get("type")
	cls = _EVENT_TYPES.get(event_type)  # type: ignore[arg-type]

	if cls is None:
		raise ValueError(f"Unknown event type {event_type!r}")

	timestamp = data.get("timestamp")

	# JSON producers sometimes emit whole numbers as floats.
	if isinstance(timestamp, float) and timestamp.is_integer():
		timestamp = int(timestamp)

	if not isinstance(timestamp, int) or isinstance(timestamp, bool):
		raise ValueError(f"Event timestamp must be an integer, got {timestamp!r}")

	if cls in NOTE_EVENTS:
		pitch = data.get("note")

		if not is_valid_pitch(pitch):
			raise ValueError(f"Event note must be an integer in {pianola.constants.PITCH_MIN}..{pianola.constants.PITCH_MAX}, got {pitch!r}")

		return cls(pitch=pitch, timestamp=timestamp)  # type: ignore[no-any-return]

	return cls(timestamp=timestamp)  # type: ignore[no-any-return]


def close_events (events: typing.Iterable[Event], epsilon_ms: int = pianola.constants.CLOSE_EPSILON_MS) -> typing.List[Event]:

	"""Return a copy of *events* with dangling notes and pedal closed.

	Every pitch whose last ``NoteOn`` has no later ``NoteOff`` gets a
	synthetic ``NoteOff`` at ``last timestamp + epsilon_ms``, in increasing
	pitch order.  If the pedal is still down at the end, a ``SustainOff`` at
	the same time follows them.  A list that is already closed comes back
	unchanged.
	"""

	closed = list(events)

	if not closed:
		return closed

	open_pitches: typing.Set[int] = set()
	sustain = False

	for event in closed:

		if isinstance(event, NoteOn):
			open_pitches.add(event.pitch)

		elif isinstance(event, NoteOff):
			open_pitches.discard(event.pitch)

		elif isinstance(event, SustainOn):
			sustain = True

		elif isinstance(event, SustainOff):
			sustain = False

	if not open_pitches and not sustain:
		return closed

	closing_time = max(event.timestamp for event in closed) + epsilon_ms

	for pitch in sorted(open_pitches):
		closed.append(NoteOff(pitch=pitch, timestamp=closing_time))

	if sustain:
		closed.append(SustainOff(timestamp=closing_time))

	logger.debug(f"Closed sequence: {len(open_pitches)} dangling note(s), sustain {'released' if sustain else 'already up'}")

	return closed


@dataclasses.dataclass(frozen=True)
class Sequence:

	"""An immutable, chronologically ordered list of events."""

	events: typing.Tuple[Event, ...] = ()

	def __len__ (self) -> int:
		return len(self.events)

	def __iter__ (self) -> typing.Iterator[Event]:
		return iter(self.events)

	def __getitem__ (self, index: int) -> Event:
		return self.events[index]

	def __bool__ (self) -> bool:
		return bool(self.events)

	@property
	def is_closed (self) -> bool:

		"""True when closing the sequence would not add anything."""

		return len(close_events(self.events)) == len(self.events)

	@property
	def duration (self) -> int:

		"""Milliseconds between the first and last event (0 when empty)."""

		if not self.events:
			return 0

		timestamps = [event.timestamp for event in self.events]
		return max(timestamps) - min(timestamps)

	@property
	def pitches (self) -> typing.List[int]:

		"""Sorted distinct pitches played in the sequence."""

		return sorted({event.pitch for event in self.events if isinstance(event, NOTE_EVENTS)})

	def closed (self, epsilon_ms: int = pianola.constants.CLOSE_EPSILON_MS) -> "Sequence":

		"""Return a closed copy (``self`` when already closed)."""

		events = close_events(self.events, epsilon_ms)

		if len(events) == len(self.events):
			return self

		return Sequence(tuple(events))

	def to_dicts (self) -> typing.List[typing.Dict[str, typing.Any]]:

		"""Export the sequence as a list of plain dicts."""

		return [event_to_dict(event) for event in self.events]

	def to_json (self) -> str:

		"""Export the sequence as a JSON string."""

		return json.dumps(self.to_dicts())

	@classmethod
	def from_dicts (cls, items: typing.Iterable[typing.Any], strict: bool = True) -> "Sequence":

		"""Build a sequence from export dicts.

		With ``strict=True`` the first malformed item raises ``ValueError``.
		With ``strict=False`` malformed items are skipped with a warning, which
		is what playback wants for data that came over the wire.
		"""

		events: typing.List[Event] = []

		for index, item in enumerate(items):

			try:
				events.append(event_from_dict(item))

			except ValueError as exc:
				if strict:
					raise ValueError(f"Invalid event at index {index}: {exc}") from exc
				logger.warning(f"Skipping invalid event at index {index}: {exc}")

		return cls(tuple(events))

	@classmethod
	def from_json (cls, text: typing.Union[str, bytes], strict: bool = True) -> "Sequence":

		"""Parse a JSON export.  Raises ``ValueError`` if it is not a JSON list."""

		try:
			data = json.loads(text)
		except json.JSONDecodeError as exc:
			raise ValueError(f"Sequence is not valid JSON: {exc}") from exc

		if not isinstance(data, list):
			raise ValueError(f"Sequence JSON must be a list, got {type(data).__name__}")

		return cls.from_dicts(data, strict=strict)


def coerce_sequence (value: typing.Any) -> Sequence:

	"""Accept a ``Sequence``, an event list, a dict list or a JSON string.

	Parsing is lenient: bad items are logged and skipped.  Anything that cannot
	be read as a list at all becomes an empty sequence.
	"""

	if isinstance(value, Sequence):
		return value

	if value is None:
		return Sequence()

	if isinstance(value, (str, bytes)):
		try:
			return Sequence.from_json(value, strict=False)
		except ValueError as exc:
			logger.warning(f"Cannot parse sequence: {exc}")
			return Sequence()

	if isinstance(value, (list, tuple)):
		events: typing.List[Event] = []

		for index, item in enumerate(value):

			if isinstance(item, NOTE_EVENTS + SUSTAIN_EVENTS):
				events.append(item)
				continue

			try:
				events.append(event_from_dict(item))
			except ValueError as exc:
				logger.warning(f"Skipping invalid event at index {index}: {exc}")

		return Sequence(tuple(events))

	logger.warning(f"Cannot play a {type(value).__name__} as a sequence")
	return Sequence()
