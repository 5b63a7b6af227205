"""Simple polyphonic tone generator.

One triangle-wave voice per sounding pitch, mixed in a ``sounddevice``
output stream callback.  Voices fade in over ``ATTACK_SECONDS`` and fade out
over ``RELEASE_SECONDS`` so starting and stopping never clicks.

The generator is an explicit dependency with its own lifecycle::

    generator = ToneGenerator()
    generator.open()        # starts the audio stream (if a device exists)
    generator.start(60)
    generator.stop(60)
    generator.close()

When no audio backend is available, :attr:`ToneGenerator.available` stays
``False`` and voices are still tracked, so callers never need to branch.
"""

import dataclasses
import logging
import threading
import typing

import numpy

import pianola.constants
import pianola.events


logger = logging.getLogger(__name__)


@typing.runtime_checkable
class VoiceOutput (typing.Protocol):

	"""
	Protocol for anything that can sound one voice per pitch.
	"""

	def start (self, pitch: int) -> None:
		...

	def stop (self, pitch: int) -> bool:
		...

	def stop_all (self) -> None:
		...


def pitch_to_frequency (pitch: float) -> float:

	"""Equal-tempered frequency in Hz, A4 (69) = 440 Hz."""

	return pianola.constants.A4_FREQUENCY * 2.0 ** ((pitch - pianola.constants.A4) / 12.0)


@dataclasses.dataclass
class Voice:

	"""Render state of one tone."""

	pitch: int
	frequency: float
	phase: float = 0.0
	attack_position: int = 0
	release_position: typing.Optional[int] = None


class ToneGenerator:

	"""Owns one voice per sounding pitch and mixes them to the audio device.

	The voice map is shared with the audio callback thread, so every access
	goes through ``_lock``.  Nothing else in Pianola needs a lock.
	"""

	def __init__ (
		self,
		sample_rate: int = pianola.constants.SAMPLE_RATE,
		block_size: int = pianola.constants.BLOCK_SIZE,
		attack_seconds: float = pianola.constants.ATTACK_SECONDS,
		release_seconds: float = pianola.constants.RELEASE_SECONDS,
		gain: float = pianola.constants.VOICE_GAIN,
		device: typing.Optional[typing.Union[int, str]] = None
	) -> None:

		if sample_rate <= 0:
			raise ValueError("sample_rate must be positive")

		if attack_seconds < 0 or release_seconds < 0:
			raise ValueError("Envelope times cannot be negative")

		self.sample_rate = sample_rate
		self.block_size = block_size
		self.gain = gain
		self.device = device

		self._attack_samples = max(1, int(attack_seconds * sample_rate))
		self._release_samples = max(1, int(release_seconds * sample_rate))

		self._voices: typing.Dict[int, Voice] = {}
		self._releasing: typing.List[Voice] = []
		self._lock = threading.Lock()
		self._stream: typing.Optional[typing.Any] = None

		#: ``True`` while an audio stream is open and running.
		self.available: bool = False

	# Lifecycle

	def open (self) -> bool:

		"""Open and start the audio output stream.

		Returns ``True`` on success.  When PortAudio or an output device is
		missing, logs a warning and returns ``False``; the generator keeps
		working silently.
		"""

		if self._stream is not None:
			return True

		try:
			import sounddevice  # noqa: PLC0415
		except (ImportError, OSError) as exc:
			logger.warning(f"Audio output unavailable, notes will be silent: {exc}")
			return False

		try:
			stream = sounddevice.OutputStream(
				samplerate = self.sample_rate,
				blocksize = self.block_size,
				channels = 1,
				dtype = "float32",
				device = self.device,
				callback = self._callback
			)
			stream.start()

		except Exception as exc:
			logger.warning(f"Could not open audio output stream, notes will be silent: {exc}")
			return False

		self._stream = stream
		self.available = True

		logger.info(f"Audio output open at {self.sample_rate} Hz")

		return True

	def close (self) -> None:

		"""Silence every voice and close the audio stream."""

		self.stop_all()

		if self._stream is None:
			return

		stream = self._stream
		self._stream = None
		self.available = False

		try:
			stream.stop()
			stream.close()
		except Exception:
			logger.exception("Failed to close audio output stream")

		logger.info("Audio output closed")

	# Voices

	@property
	def active_pitches (self) -> typing.List[int]:

		"""Sorted pitches that currently have a (non-releasing) voice."""

		with self._lock:
			return sorted(self._voices)

	@property
	def releasing_count (self) -> int:

		"""Number of voices still fading out."""

		with self._lock:
			return len(self._releasing)

	def is_sounding (self, pitch: int) -> bool:

		with self._lock:
			return pitch in self._voices

	def start (self, pitch: int) -> None:

		"""Start a voice for *pitch*, replacing any voice already playing it.

		The replacement continues from the old voice's phase and level, so a
		retrigger does not click.
		"""

		if not pianola.events.is_valid_pitch(pitch):
			raise ValueError(f"Pitch must be an integer in {pianola.constants.PITCH_MIN}..{pianola.constants.PITCH_MAX}, got {pitch!r}")

		voice = Voice(pitch=pitch, frequency=pitch_to_frequency(pitch))

		with self._lock:

			previous = self._voices.pop(pitch, None)

			if previous is None:
				for index, fading in enumerate(self._releasing):
					if fading.pitch == pitch:
						previous = self._releasing.pop(index)
						break

			if previous is not None:
				voice.phase = previous.phase
				voice.attack_position = int(self._level(previous) * self._attack_samples)

			self._voices[pitch] = voice

		logger.debug(f"Voice start {pitch} ({voice.frequency:.2f} Hz){' (replaced)' if previous else ''}")

	def stop (self, pitch: int) -> bool:

		"""Fade out the voice for *pitch*.  Returns ``False`` if none was playing."""

		with self._lock:

			voice = self._voices.pop(pitch, None)

			if voice is None:
				return False

			# Without a running stream there is nothing to fade.
			if self._stream is not None:
				voice.release_position = 0
				self._releasing.append(voice)

		logger.debug(f"Voice stop {pitch}")

		return True

	def stop_all (self) -> None:

		"""Drop every voice immediately, including those fading out."""

		with self._lock:
			count = len(self._voices) + len(self._releasing)
			self._voices.clear()
			self._releasing.clear()

		if count:
			logger.debug(f"Stopped all voices ({count})")

	# Mixing

	def render (self, frames: int) -> numpy.ndarray:

		"""Mix the next *frames* samples of every voice into a float32 block.

		Voices whose release has finished are discarded here, which is where
		their resources are actually freed.
		"""

		block = numpy.zeros(frames, dtype=numpy.float32)

		if frames <= 0:
			return block

		index = numpy.arange(frames, dtype=numpy.float64)

		with self._lock:

			for voice in list(self._voices.values()):
				block += self._render_voice(voice, index)

			finished: typing.List[Voice] = []

			for voice in self._releasing:
				block += self._render_voice(voice, index)

				if voice.release_position is not None and voice.release_position >= self._release_samples:
					finished.append(voice)

			for voice in finished:
				self._releasing.remove(voice)

		return block

	def _render_voice (self, voice: Voice, index: numpy.ndarray) -> numpy.ndarray:

		frames = len(index)
		increment = voice.frequency / self.sample_rate

		cycle = numpy.mod(voice.phase + index * increment, 1.0)
		wave = 4.0 * numpy.abs(cycle - 0.5) - 1.0

		envelope = numpy.ones(frames, dtype=numpy.float64)

		if voice.attack_position < self._attack_samples:
			envelope *= numpy.clip((voice.attack_position + index) / self._attack_samples, 0.0, 1.0)
			voice.attack_position += frames

		if voice.release_position is not None:
			envelope *= 1.0 - numpy.clip((voice.release_position + index) / self._release_samples, 0.0, 1.0)
			voice.release_position += frames

		voice.phase = float((voice.phase + frames * increment) % 1.0)

		return (wave * envelope * self.gain).astype(numpy.float32)

	def _level (self, voice: Voice) -> float:

		"""Current envelope level of a voice, 0.0 to 1.0."""

		level = min(1.0, voice.attack_position / self._attack_samples)

		if voice.release_position is not None:
			level *= max(0.0, 1.0 - voice.release_position / self._release_samples)

		return level

	def _callback (self, outdata: numpy.ndarray, frames: int, time_info: typing.Any, status: typing.Any) -> None:

		"""sounddevice stream callback (runs on the audio thread)."""

		if status:
			logger.debug(f"Audio stream status: {status}")

		outdata[:, 0] = self.render(frames)
