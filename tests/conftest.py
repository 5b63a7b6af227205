import time
import typing

import mido
import pytest


class FakeMidiOut:

	"""Minimal MIDI output stub for tests that remembers what was sent."""

	def __init__ (self) -> None:

		self.sent: typing.List[mido.Message] = []
		self.closed = False

	def send (self, message: mido.Message) -> None:

		"""Keep outgoing MIDI messages for inspection."""

		self.sent.append(message)


	def close (self) -> None:

		self.closed = True


class FakeMidiIn:

	"""Minimal MIDI input stub for tests."""

	def __init__ (self, callback: typing.Optional[typing.Callable] = None) -> None:

		"""Store the callback for injecting test messages."""

		self.callback = callback
		self.closed = False

	def close (self) -> None:

		self.closed = True

	def inject (self, message: mido.Message) -> None:

		"""Simulate receiving a MIDI message by calling the stored callback."""

		if self.callback is not None:
			self.callback(message)


# Module-level references so tests can access the most recently created fakes.
_current_fake_input: typing.Optional[FakeMidiIn] = None
_current_fake_output: typing.Optional[FakeMidiOut] = None


def _fake_get_output_names () -> list[str]:

	"""Return a fixed list of MIDI output names for tests."""

	return ["Dummy MIDI"]


def _fake_open_output (name: str) -> FakeMidiOut:

	"""Return a fake MIDI output regardless of the name."""

	global _current_fake_output
	fake = FakeMidiOut()
	_current_fake_output = fake
	return fake


def _fake_get_input_names () -> list[str]:

	"""Return a fixed list of MIDI input names for tests."""

	return ["Dummy MIDI"]


def _fake_open_input (name: str, callback: typing.Optional[typing.Callable] = None) -> FakeMidiIn:

	"""Return a fake MIDI input regardless of the name."""

	global _current_fake_input
	fake = FakeMidiIn(callback=callback)
	_current_fake_input = fake
	return fake


@pytest.fixture
def patch_midi (monkeypatch: pytest.MonkeyPatch) -> None:

	"""Patch mido to use fake MIDI output and input for all tests that need it."""

	monkeypatch.setattr(mido, "get_output_names", _fake_get_output_names)
	monkeypatch.setattr(mido, "open_output", _fake_open_output)
	monkeypatch.setattr(mido, "get_input_names", _fake_get_input_names)
	monkeypatch.setattr(mido, "open_input", _fake_open_input)


class FakeClock:

	"""Millisecond clock that only moves when told to."""

	def __init__ (self, now: int = 0) -> None:

		self.now = now

	def __call__ (self) -> int:

		return self.now

	def advance (self, ms: int) -> int:

		self.now += ms
		return self.now


class RecordingOutput:

	"""Voice output that logs every call with a wall-clock time."""

	def __init__ (self, fail_on: typing.Optional[typing.Set[int]] = None) -> None:

		self.calls: typing.List[typing.Tuple[str, typing.Optional[int], float]] = []
		self.sounding: typing.Set[int] = set()
		self.fail_on = fail_on or set()

	def start (self, pitch: int) -> None:

		if pitch in self.fail_on:
			raise RuntimeError(f"cannot start {pitch}")

		self.calls.append(("start", pitch, time.monotonic()))
		self.sounding.add(pitch)

	def stop (self, pitch: int) -> bool:

		self.calls.append(("stop", pitch, time.monotonic()))

		if pitch not in self.sounding:
			return False

		self.sounding.discard(pitch)
		return True

	def stop_all (self) -> None:

		self.calls.append(("stop_all", None, time.monotonic()))
		self.sounding.clear()

	def names (self) -> typing.List[typing.Tuple[str, typing.Optional[int]]]:

		"""Calls without their times."""

		return [(name, pitch) for name, pitch, _ in self.calls]

	def time_of (self, name: str, pitch: typing.Optional[int]) -> float:

		"""Time of the first matching call."""

		for call_name, call_pitch, when in self.calls:
			if call_name == name and call_pitch == pitch:
				return when

		raise KeyError((name, pitch))


@pytest.fixture
def clock () -> FakeClock:

	return FakeClock()


@pytest.fixture
def output () -> RecordingOutput:

	return RecordingOutput()
