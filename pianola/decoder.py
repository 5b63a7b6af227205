"""Turn raw controller messages into performance events.

The decoder sits between an input source (a MIDI port, the computer keyboard,
OSC) and the recording session.  It understands three-byte channel messages:

- note on (status ``0x9n``) with velocity > 0 -> :class:`~pianola.events.NoteOn`
- note off (``0x8n``), or note on with velocity 0 -> :class:`~pianola.events.NoteOff`
- controller 64 -> :class:`~pianola.events.SustainOn` / :class:`~pianola.events.SustainOff`
- controllers 102 / 103 -> shift the octave transposition, no event

Hardware (and some OS MIDI drivers) deliver the same message twice within a
few milliseconds.  Identical byte triples inside the debounce window are
treated as one physical action.
"""

import logging
import time
import typing

import mido

import pianola.constants
import pianola.events


logger = logging.getLogger(__name__)

MessageLike = typing.Union[mido.Message, typing.Sequence[int], bytes]
Signature = typing.Tuple[int, ...]


def monotonic_ms () -> int:

	"""Milliseconds from the monotonic clock."""

	return int(time.monotonic() * 1000)


class InputDecoder:

	"""Stateful decoder with deduplication and octave transposition.

	``decode()`` never raises.  Malformed or unsupported messages are logged
	and dropped.

	The transposition offset is applied when a key goes down and remembered
	for that key, so the matching note off releases the same transposed pitch
	even if the octave changed in between.
	"""

	def __init__ (
		self,
		debounce_ms: int = pianola.constants.DEBOUNCE_MS,
		retention_ms: int = pianola.constants.DEDUP_RETENTION_MS,
		purge_interval_ms: int = pianola.constants.DEDUP_PURGE_INTERVAL_MS,
		octave_span: int = pianola.constants.OCTAVE_SPAN,
		clock: typing.Callable[[], int] = monotonic_ms
	) -> None:

		"""Initialize the decoder.

		Parameters:
			debounce_ms: Identical messages closer together than this are dropped.
			retention_ms: Signatures older than this are purged from the cache.
			purge_interval_ms: Minimum time between cache purges.
			octave_span: Transposition is clamped to +/- this many octaves.
			clock: Source of millisecond timestamps when none is supplied.
		"""

		if debounce_ms < 0:
			raise ValueError("debounce_ms cannot be negative")

		if retention_ms < debounce_ms:
			raise ValueError("retention_ms must be at least debounce_ms")

		if octave_span < 0:
			raise ValueError("octave_span cannot be negative")

		self.debounce_ms = debounce_ms
		self.retention_ms = retention_ms
		self.purge_interval_ms = purge_interval_ms
		self.octave_span = octave_span
		self.clock = clock

		self.octave: int = 0
		self.sustain: bool = False

		self._recent: typing.Dict[Signature, int] = {}
		self._last_purge: typing.Optional[int] = None
		self._held: typing.Dict[typing.Tuple[int, int], int] = {}

	@property
	def transposition (self) -> int:

		"""Current transposition in semitones."""

		return self.octave * 12

	def shift_octave (self, delta: int) -> int:

		"""Move the transposition by *delta* octaves, clamped.  Returns the new octave."""

		self.octave = max(-self.octave_span, min(self.octave_span, self.octave + delta))
		logger.debug(f"Octave set to {self.octave:+d}")
		return self.octave

	def reset (self) -> None:

		"""Forget held keys, pedal state and the dedup cache (octave is kept)."""

		self._recent.clear()
		self._held.clear()
		self._last_purge = None
		self.sustain = False

	def decode (self, message: MessageLike, timestamp: typing.Optional[int] = None) -> typing.Optional[pianola.events.Event]:

		"""Decode one raw message into zero or one events."""

		now = self.clock() if timestamp is None else timestamp

		data = self._message_bytes(message)

		if data is None:
			return None

		self._maybe_purge(now)

		signature: Signature = tuple(data)
		last_seen = self._recent.get(signature)
		self._recent[signature] = now

		if last_seen is not None and 0 <= now - last_seen < self.debounce_ms:
			logger.debug(f"Dropped duplicate message {signature} ({now - last_seen} ms after the first)")
			return None

		try:
			parsed = mido.Message.from_bytes(data)
		except (ValueError, TypeError) as exc:
			logger.warning(f"Dropped malformed message {signature}: {exc}")
			return None

		if parsed.type == "note_on" and parsed.velocity > 0:
			return self._note_on(parsed.channel, parsed.note, now)

		if parsed.type == "note_off" or parsed.type == "note_on":
			return self._note_off(parsed.channel, parsed.note, now)

		if parsed.type == "control_change":
			return self._control_change(parsed.control, parsed.value, now)

		logger.debug(f"Ignored unsupported message type {parsed.type!r}")
		return None

	def _message_bytes (self, message: MessageLike) -> typing.Optional[typing.List[int]]:

		"""Return the message as a list of byte values, or None if it is unusable."""

		if isinstance(message, mido.Message):
			return typing.cast(typing.List[int], message.bytes())

		try:
			data = list(message)
		except TypeError:
			logger.warning(f"Dropped message of unsupported type {type(message).__name__}")
			return None

		if len(data) != 3:
			logger.warning(f"Dropped message with {len(data)} byte(s), expected 3: {data!r}")
			return None

		if not all(isinstance(b, int) and not isinstance(b, bool) and 0 <= b <= 255 for b in data):
			logger.warning(f"Dropped message with invalid bytes: {data!r}")
			return None

		return data

	def _maybe_purge (self, now: int) -> None:

		"""Drop signatures older than the retention window, at most once per interval."""

		if self._last_purge is not None and now - self._last_purge < self.purge_interval_ms:
			return

		self._last_purge = now
		cutoff = now - self.retention_ms

		stale = [signature for signature, seen in self._recent.items() if seen < cutoff]

		for signature in stale:
			del self._recent[signature]

	def _note_on (self, channel: int, note: int, now: int) -> typing.Optional[pianola.events.Event]:

		pitch = note + self.transposition

		if not pianola.events.is_valid_pitch(pitch):
			logger.warning(f"Dropped note {note}: transposed pitch {pitch} is out of range")
			return None

		self._held[(channel, note)] = pitch

		return pianola.events.NoteOn(pitch=pitch, timestamp=now)

	def _note_off (self, channel: int, note: int, now: int) -> typing.Optional[pianola.events.Event]:

		pitch = self._held.pop((channel, note), note + self.transposition)

		if not pianola.events.is_valid_pitch(pitch):
			logger.warning(f"Dropped note off {note}: transposed pitch {pitch} is out of range")
			return None

		return pianola.events.NoteOff(pitch=pitch, timestamp=now)

	def _control_change (self, control: int, value: int, now: int) -> typing.Optional[pianola.events.Event]:

		if control == pianola.constants.CC_SUSTAIN:

			down = value >= pianola.constants.SUSTAIN_THRESHOLD

			# Continuous pedals stream values; only the crossing matters.
			if down == self.sustain:
				return None

			self.sustain = down

			if down:
				return pianola.events.SustainOn(timestamp=now)

			return pianola.events.SustainOff(timestamp=now)

		if control in (pianola.constants.CC_OCTAVE_DOWN, pianola.constants.CC_OCTAVE_UP):

			# Buttons send a non-zero value on press and zero on release.
			if value > 0:
				self.shift_octave(-1 if control == pianola.constants.CC_OCTAVE_DOWN else 1)

			return None

		logger.debug(f"Ignored controller {control}")
		return None
