"""Live performance capture.

The :class:`RecordingSession` turns the performer's actions into sound and
into an event log at the same time.  It owns the sustain-aware Active Note
Set: a pitch is ``SOUNDING`` while its key is held, and ``SUSTAINED`` when the
key is up but the pedal keeps it ringing.

Recording starts automatically with the first key press after the session is
idle, and :meth:`RecordingSession.finalize` hands back a closed
:class:`~pianola.events.Sequence` and returns to idle.
"""

import enum
import logging
import types
import typing

import pianola.constants
import pianola.decoder
import pianola.events
import pianola.tone_generator


logger = logging.getLogger(__name__)


class SessionState (enum.Enum):

	IDLE = "idle"
	CAPTURING = "capturing"


class NoteState (enum.Enum):

	SOUNDING = "sounding"
	SUSTAINED = "sustained"


class RecordingSession:

	"""Records performance events and drives the live output.

	The output is read from :attr:`output` on every call, so replacing it
	(e.g. switching from the tone generator to a MIDI port) takes effect on
	the next note without rebuilding the session.
	"""

	def __init__ (
		self,
		output: pianola.tone_generator.VoiceOutput,
		close_epsilon_ms: int = pianola.constants.CLOSE_EPSILON_MS,
		clock: typing.Callable[[], int] = pianola.decoder.monotonic_ms
	) -> None:

		"""Initialize an idle session.

		Parameters:
			output: Where voices are started and stopped.
			close_epsilon_ms: Offset of synthetic events added by ``finalize()``.
			clock: Source of millisecond timestamps when a call does not pass one.
		"""

		self.output = output
		self.close_epsilon_ms = close_epsilon_ms
		self.clock = clock

		self.state = SessionState.IDLE
		self.sustain: bool = False

		self._events: typing.List[pianola.events.Event] = []
		self._notes: typing.Dict[int, NoteState] = {}

	@property
	def capturing (self) -> bool:
		return self.state is SessionState.CAPTURING

	@property
	def events (self) -> typing.Tuple[pianola.events.Event, ...]:

		"""The raw event log so far (not closed)."""

		return tuple(self._events)

	@property
	def active_notes (self) -> typing.Mapping[int, NoteState]:

		"""Read-only view of the Active Note Set."""

		return types.MappingProxyType(self._notes)

	def note_start (self, pitch: int, timestamp: typing.Optional[int] = None) -> None:

		"""A key went down."""

		if not pianola.events.is_valid_pitch(pitch):
			raise ValueError(f"Pitch must be an integer in {pianola.constants.PITCH_MIN}..{pianola.constants.PITCH_MAX}, got {pitch!r}")

		now = self.clock() if timestamp is None else timestamp

		if self.state is SessionState.IDLE:
			self._begin(now)

		self._events.append(pianola.events.NoteOn(pitch=pitch, timestamp=now))

		# A sustained copy of this pitch is replaced by the new voice.
		if self._start_voice(pitch):
			self._notes[pitch] = NoteState.SOUNDING
		else:
			self._notes.pop(pitch, None)

	def note_end (self, pitch: int, timestamp: typing.Optional[int] = None) -> None:

		"""A key came up."""

		if not pianola.events.is_valid_pitch(pitch):
			raise ValueError(f"Pitch must be an integer in {pianola.constants.PITCH_MIN}..{pianola.constants.PITCH_MAX}, got {pitch!r}")

		now = self.clock() if timestamp is None else timestamp

		if self.capturing:
			self._events.append(pianola.events.NoteOff(pitch=pitch, timestamp=now))

		if pitch not in self._notes:
			return

		if self.sustain:
			self._notes[pitch] = NoteState.SUSTAINED
			return

		del self._notes[pitch]
		self._stop_voice(pitch)

	def set_sustain (self, on: bool, timestamp: typing.Optional[int] = None) -> None:

		"""The sustain pedal changed.  Repeating the current state is a no-op."""

		on = bool(on)

		if on == self.sustain:
			return

		now = self.clock() if timestamp is None else timestamp

		self.sustain = on

		if self.capturing:
			event: pianola.events.Event = pianola.events.SustainOn(timestamp=now) if on else pianola.events.SustainOff(timestamp=now)
			self._events.append(event)

		if on:
			return

		released = [pitch for pitch, state in self._notes.items() if state is NoteState.SUSTAINED]

		for pitch in released:
			del self._notes[pitch]
			self._stop_voice(pitch)

		if released:
			logger.debug(f"Pedal up released {len(released)} sustained note(s)")

	def reset (self) -> None:

		"""Discard the recording and go idle.  Sounding voices are left alone."""

		self._events.clear()
		self.state = SessionState.IDLE

		logger.debug("Recording reset")

	def release_all (self) -> None:

		"""Force-stop every voice and empty the Active Note Set."""

		self._notes.clear()

		try:
			self.output.stop_all()
		except Exception:
			logger.exception("Failed to stop all voices")

	def finalize (self) -> pianola.events.Sequence:

		"""Close the recording and return it, leaving the session idle.

		Every sounding voice is stopped, notes still held get a synthetic note
		off, and a pedal still down gets a synthetic pedal up, so the result can
		be stored or replayed without special cases.
		"""

		self.release_all()

		events = pianola.events.close_events(self._events, self.close_epsilon_ms)
		sequence = pianola.events.Sequence(tuple(events))

		self.reset()

		logger.info(f"Recording finalized: {len(sequence)} events over {sequence.duration} ms")

		return sequence

	def _begin (self, now: int) -> None:

		"""Start a new recording, keeping pedal context if it is already down."""

		self._events.clear()
		self.state = SessionState.CAPTURING

		if self.sustain:
			self._events.append(pianola.events.SustainOn(timestamp=now))

		logger.info("Recording started")

	def _start_voice (self, pitch: int) -> bool:

		try:
			self.output.start(pitch)
		except Exception:
			logger.exception(f"Failed to start voice {pitch}")
			return False

		return True

	def _stop_voice (self, pitch: int) -> None:

		try:
			self.output.stop(pitch)
		except Exception:
			logger.exception(f"Failed to stop voice {pitch}")
