"""Real-time replay of a recorded sequence.

The :class:`Player` walks a closed sequence in timestamp order, starting and
stopping voices on an output, and re-derives the sustain pedal state as it
goes: a note released while the pedal is down keeps sounding until the pedal
comes up.

Every wait between events is interruptible, so :meth:`Player.stop` silences
playback promptly rather than at the next event.  Whatever ends playback
(completion, cancellation or an error), all voices are stopped.
"""

import asyncio
import dataclasses
import logging
import typing

import pianola.constants
import pianola.event_emitter
import pianola.events
import pianola.tone_generator


logger = logging.getLogger(__name__)

TimelineEntry = typing.Tuple[float, pianola.events.Event]


@dataclasses.dataclass
class PlaybackCursor:

	"""
	Position of one playback run, plus its cancellation token.
	"""

	timeline: typing.List[TimelineEntry]
	index: int = 0
	cancelled: asyncio.Event = dataclasses.field(default_factory=asyncio.Event)

	def cancel (self) -> None:
		self.cancelled.set()

	@property
	def finished (self) -> bool:
		return self.index >= len(self.timeline)


def build_timeline (sequence: pianola.events.Sequence, max_wait_seconds: float = pianola.constants.MAX_WAIT_SECONDS) -> typing.List[TimelineEntry]:

	"""Convert a sequence into (offset in seconds, event) pairs.

	Events are sorted by timestamp; ties keep their recorded order.  Offsets
	are measured from the first note event, so pedal events recorded before
	it land at or below zero and are applied before the first note sounds.
	Each gap between consecutive events is capped at *max_wait_seconds*.
	"""

	ordered = sorted(sequence, key=lambda event: event.timestamp)
	note_times = [event.timestamp for event in ordered if isinstance(event, pianola.events.NOTE_EVENTS)]

	if not note_times:
		return []

	start = note_times[0]
	cap_ms = max_wait_seconds * 1000.0

	timeline: typing.List[TimelineEntry] = []
	offset_ms = 0.0
	previous = start

	for event in ordered:

		if event.timestamp <= start:
			timeline.append((0.0, event))
			continue

		offset_ms += min(event.timestamp - previous, cap_ms)
		previous = event.timestamp

		timeline.append((offset_ms / 1000.0, event))

	return timeline


class Player:

	"""
	Replays sequences through a voice output with cancellation support.

	Only one playback runs at a time: starting a new one cancels the current
	one and force-stops its voices first.
	"""

	def __init__ (
		self,
		output: pianola.tone_generator.VoiceOutput,
		max_wait_seconds: float = pianola.constants.MAX_WAIT_SECONDS,
		settle_seconds: float = pianola.constants.SETTLE_SECONDS,
		close_epsilon_ms: int = pianola.constants.CLOSE_EPSILON_MS
	) -> None:

		"""Initialize an idle player.

		Parameters:
			output: Where voices are started and stopped.
			max_wait_seconds: Longest pause between two events; longer gaps
				(usually corrupt timestamps) are shortened to this.
			settle_seconds: Pause after cancelling a previous playback.
			close_epsilon_ms: Offset used when closing an unclosed sequence.
		"""

		if max_wait_seconds <= 0:
			raise ValueError("max_wait_seconds must be positive")

		if settle_seconds < 0:
			raise ValueError("settle_seconds cannot be negative")

		self.output = output
		self.max_wait_seconds = max_wait_seconds
		self.settle_seconds = settle_seconds
		self.close_epsilon_ms = close_epsilon_ms

		self.events = pianola.event_emitter.EventEmitter()
		self.task: typing.Optional[asyncio.Task] = None
		self.cursor: typing.Optional[PlaybackCursor] = None

		# Held from cancelling the previous run until the new task exists.
		self._start_lock = asyncio.Lock()
		self._stop_count: int = 0

		# Playback's own view of voices (pitch -> held only by the pedal) and
		# pedal state, independent of the recording session.
		self._voices: typing.Dict[int, bool] = {}
		self._sustain: bool = False

	@property
	def playing (self) -> bool:
		return self.task is not None and not self.task.done()

	@property
	def sustain (self) -> bool:
		return self._sustain

	@property
	def sounding (self) -> typing.List[int]:

		"""Pitches playback currently has voices for."""

		return sorted(self._voices)

	def on_event (self, event_name: str, callback: typing.Callable[..., typing.Any]) -> None:

		"""
		Register a callback for ``start``, ``note_on``, ``note_off``, ``sustain`` or ``stop``.
		"""

		self.events.on(event_name, callback)

	async def play (self, sequence: typing.Any) -> None:

		"""
		Convenience method to start playback and wait for it to end.
		"""

		await self.start(sequence)

		task = self.task

		if task is None:
			return

		try:
			await task
		except asyncio.CancelledError:
			pass

	async def start (self, sequence: typing.Any) -> None:

		"""Start replaying *sequence* in a separate asyncio task.

		*sequence* may be a :class:`~pianola.events.Sequence`, a list of events
		or export dicts, or a JSON string.  Malformed items are skipped with a
		warning, and an unclosed sequence is closed before replay.
		"""

		closed = pianola.events.coerce_sequence(sequence).closed(self.close_epsilon_ms)
		cursor = PlaybackCursor(timeline=build_timeline(closed, self.max_wait_seconds))

		async with self._start_lock:

			stops = self._stop_count

			if self.playing:
				await self.stop()
				stops += 1
				await asyncio.sleep(self.settle_seconds)

			# A stop requested while this start was pending wins.
			if self._stop_count != stops:
				logger.info("Playback start superseded by stop")
				return

			self.cursor = cursor
			self.task = asyncio.create_task(self._run(cursor))

		logger.info(f"Playback started ({len(closed)} events, {closed.duration} ms)")

	async def stop (self) -> None:

		"""
		Cancel playback and wait until every voice is stopped.
		"""

		self._stop_count += 1

		cursor = self.cursor
		task = self.task

		# Nothing running: leave the output alone, it may belong to live play.
		if cursor is None and (task is None or task.done()):
			self.task = None
			return

		if cursor is not None:
			cursor.cancel()

		if task is not None and not task.done():

			try:
				await task
			except asyncio.CancelledError:
				pass

		self.task = None

		# Covers a task that was cancelled before its cleanup could run.
		self._release_all()

	async def _run (self, cursor: PlaybackCursor) -> None:

		"""Playback loop: wait for each event's offset, then apply it."""

		loop = asyncio.get_running_loop()
		start_time = loop.time()

		await self.events.emit_async("start")

		try:

			if not cursor.timeline:
				logger.info("Nothing to play")

			while not cursor.finished and not cursor.cancelled.is_set():

				offset, event = cursor.timeline[cursor.index]
				delay = start_time + offset - loop.time()

				if delay > 0 and await self._wait(cursor, min(delay, self.max_wait_seconds)):
					break

				try:
					await self._apply(event)
				except Exception:
					logger.exception(f"Failed to play event {event!r}, skipping")

				cursor.index += 1

			if cursor.cancelled.is_set():
				logger.info("Playback cancelled")
			else:
				logger.info("Playback complete")

		except Exception:
			logger.exception("Playback failed")

		finally:
			self._release_all()

			if self.cursor is cursor:
				self.cursor = None

			await self.events.emit_async("stop")

	async def _wait (self, cursor: PlaybackCursor, seconds: float) -> bool:

		"""Sleep for *seconds* unless cancelled first.  Returns True if cancelled."""

		try:
			await asyncio.wait_for(cursor.cancelled.wait(), timeout=seconds)
		except asyncio.TimeoutError:
			return False

		return True

	async def _apply (self, event: pianola.events.Event) -> None:

		"""Apply one event to the output and the playback voice state."""

		if isinstance(event, pianola.events.NoteOn):

			if not pianola.events.is_valid_pitch(event.pitch):
				logger.warning(f"Skipping note on with out-of-range pitch {event.pitch!r}")
				return

			# Replaces any voice (held or sustained) already on this pitch.
			if self._start_voice(event.pitch):
				self._voices[event.pitch] = False
				await self.events.emit_async("note_on", event.pitch)

		elif isinstance(event, pianola.events.NoteOff):

			if event.pitch not in self._voices:
				return

			if self._sustain:
				self._voices[event.pitch] = True
				return

			del self._voices[event.pitch]
			self._stop_voice(event.pitch)
			await self.events.emit_async("note_off", event.pitch)

		elif isinstance(event, pianola.events.SustainOn):

			self._sustain = True
			await self.events.emit_async("sustain", True)

		elif isinstance(event, pianola.events.SustainOff):

			self._sustain = False

			released = [pitch for pitch, sustained in self._voices.items() if sustained]

			for pitch in released:
				del self._voices[pitch]
				self._stop_voice(pitch)
				await self.events.emit_async("note_off", pitch)

			await self.events.emit_async("sustain", False)

		else:
			logger.warning(f"Skipping unsupported event {event!r}")

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

	def _release_all (self) -> None:

		"""Force-stop all output and forget playback voice state."""

		self._voices.clear()
		self._sustain = False

		try:
			self.output.stop_all()
		except Exception:
			logger.exception("Failed to stop all voices")
