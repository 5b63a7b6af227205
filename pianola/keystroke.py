"""Play the piano from the computer keyboard.

Two pieces:

- :class:`KeystrokeListener` reads single keystrokes from a terminal in a
  background thread and hands each one to a callback.
- :class:`KeyboardInput` translates keystrokes into the same three-byte
  controller messages a MIDI keyboard sends, so the computer keyboard goes
  through the decoder like any other input.

A terminal reports key presses but not releases, so note and sustain keys
*latch*: the first press holds the note (or pedal), the second releases it.

Layout (middle C on ``a``)::

     w e   t y u   o p
    a s d f g h j k l ; '

``Tab`` toggles the sustain pedal, ``z`` / ``x`` shift down / up an octave,
``Enter`` sends the recording, ``Space`` plays it back and ``r`` resets it.

**Platform support:** Linux and macOS.  Requires :mod:`tty` and :mod:`termios`
and a real TTY on stdin.  Elsewhere the listener starts in a degraded mode and
logs a warning instead of raising.
"""

import logging
import select
import sys
import threading
import typing

import pianola.constants


logger = logging.getLogger(__name__)


def keyboard_unavailable_reason () -> typing.Optional[str]:

	"""Why single-keystroke input cannot be used here, or ``None`` if it can."""

	try:
		import termios  # noqa: PLC0415
	except ImportError:
		return "termios is not available; keyboard input needs Linux or macOS."

	if not sys.stdin.isatty():
		return "stdin is not an interactive terminal."

	try:
		termios.tcgetattr(sys.stdin.fileno())
	except (OSError, termios.error) as e:
		return f"Cannot read terminal settings: {e}"

	return None


Message = typing.Tuple[int, int, int]


class KeyboardInput:

	"""Translate keystrokes into controller messages and piano actions.

	:meth:`translate` returns either a list of raw ``(status, data1, data2)``
	messages to feed to the decoder, or an action name (``"send"``,
	``"play"``, ``"reset"``) for the caller to perform.
	"""

	def __init__ (self, key_notes: typing.Optional[typing.Mapping[str, int]] = None, channel: int = 0) -> None:

		self.key_notes: typing.Dict[str, int] = dict(pianola.constants.KEY_NOTES if key_notes is None else key_notes)
		self.channel = channel

		self.held: typing.Set[str] = set()
		self.sustain: bool = False

	def translate (self, key: str) -> typing.Union[typing.List[Message], str, None]:

		key = key.lower()

		if key in self.key_notes:
			note = self.key_notes[key]

			if key in self.held:
				self.held.discard(key)
				return [(self._status(pianola.constants.STATUS_NOTE_OFF), note, 0)]

			self.held.add(key)
			return [(self._status(pianola.constants.STATUS_NOTE_ON), note, pianola.constants.DEFAULT_VELOCITY)]

		if key == pianola.constants.KEY_SUSTAIN:
			self.sustain = not self.sustain
			return [(self._status(pianola.constants.STATUS_CONTROL_CHANGE), pianola.constants.CC_SUSTAIN, 127 if self.sustain else 0)]

		if key in (pianola.constants.KEY_OCTAVE_DOWN, pianola.constants.KEY_OCTAVE_UP):
			control = pianola.constants.CC_OCTAVE_DOWN if key == pianola.constants.KEY_OCTAVE_DOWN else pianola.constants.CC_OCTAVE_UP
			# Press then release, as a hardware button would send.
			return [(self._status(pianola.constants.STATUS_CONTROL_CHANGE), control, 127), (self._status(pianola.constants.STATUS_CONTROL_CHANGE), control, 0)]

		if key in (pianola.constants.KEY_SEND, "\r"):
			return "send"

		if key == pianola.constants.KEY_PLAY:
			return "play"

		if key == pianola.constants.KEY_RESET:
			return "reset"

		return None

	def release_all (self) -> typing.List[Message]:

		"""Messages that let go of every latched key and the pedal."""

		messages: typing.List[Message] = [(self._status(pianola.constants.STATUS_NOTE_OFF), self.key_notes[key], 0) for key in sorted(self.held)]

		if self.sustain:
			messages.append((self._status(pianola.constants.STATUS_CONTROL_CHANGE), pianola.constants.CC_SUSTAIN, 0))

		self.held.clear()
		self.sustain = False

		return messages

	def _status (self, kind: int) -> int:
		return (kind << 4) | self.channel


class KeystrokeListener:

	"""Background daemon thread that reads single keystrokes from stdin.

	Puts stdin into *cbreak* mode so each keypress is delivered immediately,
	without waiting for Enter, and calls *callback* with each character on
	the listener thread.  The callback must be thread-safe; the piano passes
	one that hops onto the event loop.

	Terminal settings are always restored on shutdown, even if an exception
	occurs.
	"""

	def __init__ (self, callback: typing.Callable[[str], None]) -> None:

		self.callback = callback
		self._thread: typing.Optional[threading.Thread] = None
		self._running: bool = False

		#: ``True`` after a successful :meth:`start` on a supported platform.
		self.active: bool = False

	def start (self) -> None:

		"""Start the listener thread.  A no-op (with a warning) when unsupported."""

		if self._running:
			return

		reason = keyboard_unavailable_reason()

		if reason is not None:
			logger.warning(f"Keyboard input disabled: {reason}")
			return

		self._running = True
		self.active = True
		self._thread = threading.Thread(
			target = self._listen,
			name   = "pianola-keystroke-listener",
			daemon = True,
		)
		self._thread.start()

	def stop (self) -> None:

		"""Signal the listener to stop; it exits within one poll interval (~0.1 s)."""

		self._running = False
		self.active = False

	def _listen (self) -> None:

		import termios  # noqa: PLC0415
		import tty      # noqa: PLC0415

		fd = sys.stdin.fileno()
		old_settings = termios.tcgetattr(fd)

		try:
			# cbreak: one character at a time, Ctrl+C still works.
			tty.setcbreak(fd)

			while self._running:
				ready, _, _ = select.select([sys.stdin], [], [], 0.1)
				if ready:
					char = sys.stdin.read(1)
					if char:
						self.callback(char)

		except Exception:
			logger.exception("Keystroke listener stopped unexpectedly")

		finally:
			termios.tcsetattr(fd, termios.TCSADRAIN, old_settings)
			self.active = False
