import asyncio
import dataclasses
import logging
import signal
import typing

import pianola.config
import pianola.decoder
import pianola.event_emitter
import pianola.events
import pianola.keystroke
import pianola.midi_utils
import pianola.player
import pianola.session
import pianola.store
import pianola.tone_generator

if typing.TYPE_CHECKING:
	import pianola.osc


logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class Command:

	"""A queued request from an input source that is not a controller message."""

	name: str
	args: typing.Tuple[typing.Any, ...] = ()


class Piano:

	"""
	The top-level controller: a playable, recordable piano.

	The `Piano` wires the input decoder, recording session, sequence store,
	player and sound output together.  All input (MIDI controller, computer
	keyboard, OSC) is funnelled through one queue and applied in arrival
	order on the event loop.

	Live playing and playback share one sound output but never at the same
	time: any live input stops playback first, and starting playback
	silences live notes first.

	Typical workflow:
	1. Create a `Piano`, optionally from a `Settings` loaded from YAML.
	2. Call `piano.run()` (blocking) or `await piano.start()`.
	3. Play; press Enter (or call `await piano.send()`) to finalize and deliver.
	4. Press Space (or `await piano.play_last()`) to hear the take back.
	"""

	def __init__ (
		self,
		settings: typing.Optional[pianola.config.Settings] = None,
		output: typing.Optional[pianola.tone_generator.VoiceOutput] = None,
		clock: typing.Callable[[], int] = pianola.decoder.monotonic_ms
	) -> None:

		"""
		Initialize a piano.

		Parameters:
			settings: Runtime settings (defaults when omitted).
			output: A custom voice output.  When omitted, the output follows
				``settings.output_mode``.
			clock: Millisecond clock shared by the decoder and the session.
		"""

		self.settings = settings if settings is not None else pianola.config.Settings()
		self.clock = clock

		self.generator = pianola.tone_generator.ToneGenerator(
			sample_rate = self.settings.sample_rate,
			release_seconds = self.settings.release_seconds
		)
		self.midi_output: typing.Optional[pianola.midi_utils.MidiOutput] = None
		self.output_mode = "custom" if output is not None else self.settings.output_mode
		self.output: pianola.tone_generator.VoiceOutput = output if output is not None else self._make_output(self.settings.output_mode)

		self.decoder = pianola.decoder.InputDecoder(
			debounce_ms = self.settings.debounce_ms,
			retention_ms = max(self.settings.dedup_retention_ms, self.settings.debounce_ms),
			octave_span = self.settings.octave_span,
			clock = clock
		)

		self.session = pianola.session.RecordingSession(
			output = self.output,
			close_epsilon_ms = self.settings.close_epsilon_ms,
			clock = clock
		)

		self.store = pianola.store.SequenceStore()

		if self.settings.delivery_url:
			self.store.add_delivery(pianola.store.WebSocketDelivery(self.settings.delivery_url))

		self.player = pianola.player.Player(
			output = self.output,
			max_wait_seconds = self.settings.max_wait_seconds,
			settle_seconds = self.settings.settle_seconds,
			close_epsilon_ms = self.settings.close_epsilon_ms
		)

		self.events = pianola.event_emitter.EventEmitter()
		self.keyboard = pianola.keystroke.KeyboardInput(channel=self.settings.midi_channel)

		self.player.on_event("start", lambda: self.events.emit_sync("playing", True))
		self.player.on_event("stop", lambda: self.events.emit_sync("playing", False))

		self.running: bool = False
		self.midi_in: typing.Any = None
		self._loop: typing.Optional[asyncio.AbstractEventLoop] = None
		self._queue: typing.Optional[asyncio.Queue] = None
		self._input_task: typing.Optional[asyncio.Task] = None
		self._keystroke_listener: typing.Optional[pianola.keystroke.KeystrokeListener] = None
		self._osc_server: typing.Optional["pianola.osc.OscServer"] = None

	# ------------------------------------------------------------------
	# Read-only state for renderers
	# ------------------------------------------------------------------

	@property
	def active_notes (self) -> typing.Mapping[int, pianola.session.NoteState]:
		"""Pitches sounding from live play, and whether each is held or only sustained."""
		return self.session.active_notes

	@property
	def sustain (self) -> bool:
		return self.session.sustain

	@property
	def octave (self) -> int:
		return self.decoder.octave

	@property
	def playing (self) -> bool:
		return self.player.playing

	@property
	def last_sequence (self) -> pianola.events.Sequence:
		return self.store.last

	@property
	def available (self) -> bool:

		"""False when the sound output could not be opened (playing is silent)."""

		return bool(getattr(self.output, "available", True))

	def on_event (self, event_name: str, callback: typing.Callable[..., typing.Any]) -> None:

		"""
		Register a callback for a named event.

		Events: ``note_on`` (pitch), ``note_off`` (pitch), ``active_notes``
		(dict of pitch -> state name), ``sustain`` (bool), ``octave`` (int),
		``sequence`` (Sequence), ``playing`` (bool).
		"""

		self.events.on(event_name, callback)

	# ------------------------------------------------------------------
	# Lifecycle
	# ------------------------------------------------------------------

	def run (self) -> None:

		"""
		Start the piano and block until interrupted (e.g. Ctrl+C).
		"""

		try:
			asyncio.run(self._run())

		except KeyboardInterrupt:
			pass

	async def _run (self) -> None:

		await self.start()

		stop_event = asyncio.Event()
		loop = asyncio.get_running_loop()

		for sig in (signal.SIGINT, signal.SIGTERM):
			try:
				loop.add_signal_handler(sig, stop_event.set)
			except (NotImplementedError, RuntimeError):
				pass

		logger.info("Piano ready. Press Ctrl+C to quit.")

		try:
			await stop_event.wait()
		finally:
			await self.stop()

	async def start (self) -> None:

		"""Open the sound output and inputs and start processing input.

		Inputs are opened after the event loop is running so that device
		callback threads can hand messages over with ``call_soon_threadsafe``.
		"""

		if self.running:
			return

		self._loop = asyncio.get_running_loop()
		self._queue = asyncio.Queue()
		self.running = True

		self.open_output()

		self._input_task = asyncio.create_task(self._process_input())

		if self.settings.input_device is not None:
			device_name, midi_in = pianola.midi_utils.select_input_device(self.settings.input_device, self.feed)
			if device_name:
				self.midi_in = midi_in

		if self.settings.keyboard:
			self._keystroke_listener = pianola.keystroke.KeystrokeListener(self._on_keystroke)
			self._keystroke_listener.start()

		if self.settings.osc:
			import pianola.osc as pianola_osc  # noqa: PLC0415
			self._osc_server = pianola_osc.OscServer(
				self,
				receive_port = self.settings.osc_receive_port,
				send_port = self.settings.osc_send_port,
				send_host = self.settings.osc_send_host
			)
			await self._osc_server.start()

		logger.info("Piano started")

	async def stop (self) -> None:

		"""
		Stop playback, silence everything and close devices.
		"""

		if not self.running:
			return

		logger.info("Stopping piano...")

		self.running = False

		if self._keystroke_listener is not None:
			self._keystroke_listener.stop()
			self._keystroke_listener = None

		if self.midi_in is not None:
			self.midi_in.close()
			self.midi_in = None

		if self._osc_server is not None:
			await self._osc_server.stop()
			self._osc_server = None

		if self._input_task is not None:
			self._input_task.cancel()
			try:
				await self._input_task
			except asyncio.CancelledError:
				pass
			self._input_task = None

		await self.player.stop()
		self.session.release_all()
		self.close_output()

		self._queue = None
		self._loop = None

		logger.info("Piano stopped")

	# ------------------------------------------------------------------
	# Input queue
	# ------------------------------------------------------------------

	def feed (self, message: typing.Any) -> None:

		"""Queue a raw controller message.  Safe to call from any thread."""

		self._enqueue(message)

	def submit (self, name: str, *args: typing.Any) -> None:

		"""Queue a command (``key``, ``send``, ``play``, ``stop``, ``reset``,
		``octave``, ``note_on``, ``note_off``, ``sustain``).  Safe to call from
		any thread."""

		self._enqueue(Command(name, args))

	def _enqueue (self, item: typing.Any) -> None:

		if self._queue is None or self._loop is None:
			logger.debug(f"Piano not running, dropped input {item!r}")
			return

		self._loop.call_soon_threadsafe(self._queue.put_nowait, item)

	def _on_keystroke (self, key: str) -> None:
		self.submit("key", key)

	async def _process_input (self) -> None:

		"""Apply queued input in arrival order until cancelled."""

		assert self._queue is not None, "Input queue must exist while running"

		while True:

			item = await self._queue.get()

			try:
				if isinstance(item, Command):
					await self.handle_command(item.name, *item.args)
				else:
					await self.handle_message(item)

			except Exception:
				logger.exception(f"Failed to handle input {item!r}")

	async def handle_message (self, message: typing.Any) -> None:

		"""Decode one raw controller message and apply it."""

		octave = self.decoder.octave
		event = self.decoder.decode(message)

		if self.decoder.octave != octave:
			self.events.emit_sync("octave", self.decoder.octave)

		if event is not None:
			await self.apply(event)

	async def handle_command (self, name: str, *args: typing.Any) -> None:

		if name == "key":
			await self.handle_key(*args)
		elif name == "note_on":
			await self.note_start(*args)
		elif name == "note_off":
			await self.note_end(*args)
		elif name == "sustain":
			await self.set_sustain(*args)
		elif name == "octave":
			self.shift_octave(*args)
		elif name == "send":
			await self.send()
		elif name == "play":
			await self.play_last()
		elif name == "stop":
			await self.stop_playback()
		elif name == "reset":
			self.reset()
		else:
			logger.warning(f"Unknown command {name!r}")

	async def handle_key (self, key: str) -> None:

		"""Apply one computer-keyboard keystroke."""

		result = self.keyboard.translate(key)

		if result is None:
			logger.debug(f"Unmapped key {key!r}")
			return

		if isinstance(result, str):
			await self.handle_command(result)
			return

		for message in result:
			await self.handle_message(message)

	# ------------------------------------------------------------------
	# Live performance
	# ------------------------------------------------------------------

	async def apply (self, event: pianola.events.Event) -> None:

		"""Apply a decoded event to the recording session."""

		if isinstance(event, pianola.events.NoteOn):
			await self.note_start(event.pitch, event.timestamp)
		elif isinstance(event, pianola.events.NoteOff):
			await self.note_end(event.pitch, event.timestamp)
		elif isinstance(event, pianola.events.SustainOn):
			await self.set_sustain(True, event.timestamp)
		elif isinstance(event, pianola.events.SustainOff):
			await self.set_sustain(False, event.timestamp)

	async def note_start (self, pitch: int, timestamp: typing.Optional[int] = None) -> None:

		await self._take_over_from_playback()

		self.session.note_start(pitch, timestamp)

		self.events.emit_sync("note_on", pitch)
		self._emit_active_notes()

	async def note_end (self, pitch: int, timestamp: typing.Optional[int] = None) -> None:

		await self._take_over_from_playback()

		self.session.note_end(pitch, timestamp)

		self.events.emit_sync("note_off", pitch)
		self._emit_active_notes()

	async def set_sustain (self, on: bool, timestamp: typing.Optional[int] = None) -> None:

		await self._take_over_from_playback()

		if bool(on) == self.session.sustain:
			return

		self.session.set_sustain(on, timestamp)

		self.events.emit_sync("sustain", self.session.sustain)
		self._emit_active_notes()

	def shift_octave (self, delta: int) -> int:

		octave = self.decoder.shift_octave(delta)
		self.events.emit_sync("octave", octave)
		return octave

	async def _take_over_from_playback (self) -> None:

		"""Stop playback before live input writes to the shared output."""

		if self.player.playing:
			logger.info("Live input - stopping playback")
			await self.player.stop()

	def _emit_active_notes (self) -> None:

		self.events.emit_sync("active_notes", {pitch: state.value for pitch, state in self.session.active_notes.items()})

	# ------------------------------------------------------------------
	# Recording, delivery and playback
	# ------------------------------------------------------------------

	def finalize (self) -> pianola.events.Sequence:

		"""Close the current recording and store it.  Returns the closed sequence.

		Voices are always released.  With nothing recorded the stored take is
		left as it was and an empty sequence is returned.
		"""

		capturing = self.session.capturing
		sequence = self.session.finalize()

		self._emit_active_notes()

		if not capturing:
			logger.debug("Nothing recorded, keeping the stored sequence")
			return sequence

		sequence = self.store.put(sequence)
		self.events.emit_sync("sequence", sequence)

		return sequence

	def reset (self) -> None:

		"""Discard the current recording."""

		self.session.reset()

	async def send (self) -> bool:

		"""Finalize the current take (if any) and deliver the stored sequence."""

		if self.session.capturing:
			self.finalize()

		return await self.store.send()

	async def play_last (self) -> None:

		"""Replay the stored sequence, finalizing the current take first."""

		if self.session.capturing:
			self.finalize()
		else:
			self.session.release_all()
			self._emit_active_notes()

		await self.player.start(self.store.last)

	async def stop_playback (self) -> None:
		await self.player.stop()

	# ------------------------------------------------------------------
	# Output
	# ------------------------------------------------------------------

	async def set_output_mode (self, mode: str) -> None:

		"""Switch between the tone generator (``synth``) and a MIDI port (``midi``).

		All voices are silenced first.
		"""

		if mode not in pianola.config.OUTPUT_MODES:
			raise ValueError(f"Output mode must be one of {pianola.config.OUTPUT_MODES}, got {mode!r}")

		if mode == self.output_mode:
			return

		await self.player.stop()
		self.session.release_all()
		self._emit_active_notes()

		if self.running:
			self.close_output()

		self.output_mode = mode
		self.output = self._make_output(mode)
		self.session.output = self.output
		self.player.output = self.output

		if self.running:
			self.open_output()

		logger.info(f"Output mode set to {mode}")

	def _make_output (self, mode: str) -> pianola.tone_generator.VoiceOutput:

		if mode == "midi":
			if self.midi_output is None:
				self.midi_output = pianola.midi_utils.MidiOutput(
					device_name = self.settings.midi_output_device,
					channel = self.settings.midi_channel
				)
			return self.midi_output

		return self.generator

	def open_output (self) -> None:

		if self.output is self.generator:
			self.generator.open()
		elif self.midi_output is not None and self.output is self.midi_output:
			self.midi_output.open()

	def close_output (self) -> None:

		if self.output is self.generator:
			self.generator.close()
		elif self.midi_output is not None and self.output is self.midi_output:
			self.midi_output.close()
		else:
			try:
				self.output.stop_all()
			except Exception:
				logger.exception("Failed to stop all voices")
