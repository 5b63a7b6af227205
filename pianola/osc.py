"""OSC integration for remote control and state broadcasting.

Enable with ``osc: true`` in the config.  The server listens on a UDP port
(default 9000) for control messages and sends state updates to a renderer at
a target host/port (default 127.0.0.1:9001).

Receive Handlers
────────────────
- ``/note_on <pitch>`` / ``/note_off <pitch>``: Press / release a key
- ``/sustain <0|1>``: Pedal up / down
- ``/octave <delta>``: Shift the octave transposition
- ``/midi <status> <data1> <data2>``: A raw controller message (goes through the decoder)
- ``/send``, ``/play``, ``/stop``, ``/reset``: Recording and playback actions

Send Events
───────────
- ``/note_on <pitch>`` / ``/note_off <pitch>``: Live key changes
- ``/active_notes <pitch> ...``: Every pitch currently sounding from live play
- ``/sustain <0|1>``: Pedal changes
- ``/octave <int>``: Transposition changes
- ``/playing <0|1>``: Playback started / stopped
- ``/sequence <json>``: A recording was finalized
"""

import asyncio
import logging
import typing

import pythonosc.dispatcher
import pythonosc.osc_server
import pythonosc.udp_client

if typing.TYPE_CHECKING:
	from pianola.piano import Piano


logger = logging.getLogger(__name__)

ACTIONS = ("send", "play", "stop", "reset")


class OscServer:

	"""Async OSC server/client bridging a piano to remote controllers and renderers.

	Incoming messages are queued on the piano, so they are applied in order
	with every other input source.
	"""

	def __init__ (
		self,
		piano: "Piano",
		receive_port: int = 9000,
		send_port: int = 9001,
		send_host: str = "127.0.0.1"
	) -> None:

		self._piano = piano
		self._receive_port = receive_port
		self._send_port = send_port
		self._send_host = send_host

		self._server: typing.Optional[typing.Any] = None
		self._transport: typing.Optional[asyncio.BaseTransport] = None
		self._client: typing.Optional[pythonosc.udp_client.SimpleUDPClient] = None
		self._dispatcher = pythonosc.dispatcher.Dispatcher()

		self._dispatcher.map("/note_on", self._handle_note, "note_on")
		self._dispatcher.map("/note_off", self._handle_note, "note_off")
		self._dispatcher.map("/sustain", self._handle_sustain)
		self._dispatcher.map("/octave", self._handle_octave)
		self._dispatcher.map("/midi", self._handle_midi)

		for action in ACTIONS:
			self._dispatcher.map(f"/{action}", self._handle_action, action)

		self._subscriptions: typing.List[typing.Tuple[str, typing.Callable[..., typing.Any]]] = [
			("note_on", lambda pitch: self.send("/note_on", pitch)),
			("note_off", lambda pitch: self.send("/note_off", pitch)),
			("active_notes", lambda notes: self.send("/active_notes", *sorted(notes))),
			("sustain", lambda on: self.send("/sustain", int(on))),
			("octave", lambda octave: self.send("/octave", octave)),
			("playing", lambda playing: self.send("/playing", int(playing))),
			("sequence", lambda sequence: self.send("/sequence", sequence.to_json())),
		]

	async def start (self) -> None:

		"""Start the OSC server and client, and subscribe to piano state."""

		self._client = pythonosc.udp_client.SimpleUDPClient(self._send_host, self._send_port)

		self._server = pythonosc.osc_server.AsyncIOOSCUDPServer(
			("0.0.0.0", self._receive_port),
			self._dispatcher,
			asyncio.get_event_loop()  # type: ignore[arg-type]
		)

		transport, _ = await self._server.create_serve_endpoint()
		self._transport = transport

		for event_name, callback in self._subscriptions:
			self._piano.on_event(event_name, callback)

		logger.info(f"OSC listening on :{self._receive_port}, sending to {self._send_host}:{self._send_port}")

	async def stop (self) -> None:

		"""Stop the OSC server and stop broadcasting."""

		for event_name, callback in self._subscriptions:
			try:
				self._piano.events.off(event_name, callback)
			except ValueError:
				pass

		if self._transport:
			self._transport.close()
			self._transport = None
			logger.info("OSC server stopped")

		self._client = None

	def send (self, address: str, *args: typing.Any) -> None:

		"""Send an OSC message."""

		if self._client:
			try:
				self._client.send_message(address, list(args))
			except Exception as e:
				logger.warning(f"OSC send error: {e}")

	# Handlers

	def _handle_note (self, address: str, fixed: typing.List[typing.Any], *args: typing.Any) -> None:
		if not args:
			return
		try:
			pitch = int(args[0])
		except (ValueError, TypeError):
			logger.warning(f"Invalid OSC pitch argument: {args[0]}")
			return
		self._piano.submit(fixed[0], pitch)

	def _handle_sustain (self, address: str, *args: typing.Any) -> None:
		if not args:
			return
		try:
			on = bool(int(args[0]))
		except (ValueError, TypeError):
			logger.warning(f"Invalid OSC sustain argument: {args[0]}")
			return
		self._piano.submit("sustain", on)

	def _handle_octave (self, address: str, *args: typing.Any) -> None:
		if not args:
			return
		try:
			delta = int(args[0])
		except (ValueError, TypeError):
			logger.warning(f"Invalid OSC octave argument: {args[0]}")
			return
		self._piano.submit("octave", delta)

	def _handle_midi (self, address: str, *args: typing.Any) -> None:
		if len(args) != 3:
			logger.warning(f"OSC /midi expects 3 arguments, got {len(args)}")
			return
		try:
			message = tuple(int(arg) for arg in args)
		except (ValueError, TypeError):
			logger.warning(f"Invalid OSC /midi arguments: {args}")
			return
		self._piano.feed(message)

	def _handle_action (self, address: str, fixed: typing.List[typing.Any], *args: typing.Any) -> None:
		self._piano.submit(fixed[0])
