"""Holds the last finished sequence and hands it on.

The store is the meeting point between recording and everything that happens
afterwards: delivery to a remote consumer, saving to disk, and playback.

Delivery hooks are plain callables (sync or async) that receive the
:class:`~pianola.events.Sequence`.  :class:`WebSocketDelivery` is a ready-made
hook that posts the sequence to a WebSocket endpoint as JSON::

    store.add_delivery(WebSocketDelivery("ws://localhost:4000/piano"))
    await store.send()
"""

import asyncio
import json
import logging
import typing

import websockets
import websockets.asyncio.client
import websockets.exceptions

import pianola.events
import pianola.midi_file


logger = logging.getLogger(__name__)

DeliveryHook = typing.Callable[[pianola.events.Sequence], typing.Any]


class SequenceStore:

	"""The most recent finalized sequence plus the hooks that receive it."""

	def __init__ (self) -> None:

		self._last: pianola.events.Sequence = pianola.events.Sequence()
		self._hooks: typing.List[DeliveryHook] = []

	@property
	def last (self) -> pianola.events.Sequence:

		"""The stored sequence (empty until something is stored)."""

		return self._last

	def put (self, sequence: pianola.events.Sequence) -> pianola.events.Sequence:

		"""Store a sequence, closing it first if needed.  Returns what was stored."""

		self._last = sequence.closed()
		logger.debug(f"Stored sequence with {len(self._last)} events")
		return self._last

	def clear (self) -> None:
		self._last = pianola.events.Sequence()

	def add_delivery (self, hook: DeliveryHook) -> None:
		self._hooks.append(hook)

	def remove_delivery (self, hook: DeliveryHook) -> None:

		"""Raises ``ValueError`` if the hook was never added."""

		self._hooks.remove(hook)

	async def send (self) -> bool:

		"""Hand the stored sequence to every delivery hook.

		Returns ``True`` when every hook succeeded.  A failing hook is logged
		and does not stop the others.  With no hooks registered the call is a
		no-op that returns ``False``.
		"""

		if not self._hooks:
			logger.warning("No delivery configured, sequence not sent")
			return False

		sequence = self._last
		ok = True

		for hook in list(self._hooks):

			try:
				result = hook(sequence)

				if asyncio.iscoroutine(result):
					result = await result

				if result is False:
					ok = False

			except Exception:
				logger.exception(f"Delivery hook {hook!r} failed")
				ok = False

		logger.info(f"Sequence with {len(sequence)} events {'sent' if ok else 'sent with errors'}")

		return ok

	def save (self, filename: str, bpm: float = pianola.midi_file.DEFAULT_BPM) -> None:

		"""Save the stored sequence as a MIDI file."""

		pianola.midi_file.save(self._last, filename, bpm=bpm)

	def load (self, filename: str) -> pianola.events.Sequence:

		"""Load a MIDI file and store it (closed).  Returns the stored sequence."""

		return self.put(pianola.midi_file.load(filename))


class WebSocketDelivery:

	"""Delivery hook that sends a sequence to a WebSocket server.

	Each call opens a connection, sends one JSON message and closes it::

	    {"event": "send_midi_sequence", "sequence": [{"type": "noteOn", ...}, ...]}

	Returns ``False`` (and logs) when the server cannot be reached.
	"""

	def __init__ (self, url: str, event_name: str = "send_midi_sequence", timeout: float = 5.0) -> None:

		self.url = url
		self.event_name = event_name
		self.timeout = timeout

	def __repr__ (self) -> str:
		return f"WebSocketDelivery({self.url!r})"

	def build_message (self, sequence: pianola.events.Sequence) -> str:
		return json.dumps({"event": self.event_name, "sequence": sequence.to_dicts()})

	async def __call__ (self, sequence: pianola.events.Sequence) -> bool:

		message = self.build_message(sequence)

		try:
			async with websockets.asyncio.client.connect(self.url, open_timeout=self.timeout) as websocket:
				await websocket.send(message)

		except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as exc:
			logger.error(f"Could not deliver sequence to {self.url}: {exc}")
			return False

		logger.info(f"Delivered sequence to {self.url}")

		return True
