"""YAML configuration.

Every setting has a default, so a config file only needs the values that
differ.  Example ``pianola.yaml``::

    input_device: "Digital Piano:Digital Piano MIDI 1 20:0"
    output_mode: synth          # or "midi"
    midi_output_device: null
    delivery_url: "ws://localhost:4000/piano"
    keyboard: true
    osc: false
    debounce_ms: 30
    max_wait_seconds: 2.0
"""

import dataclasses
import logging
import os
import typing

import yaml

import pianola.constants


logger = logging.getLogger(__name__)

OUTPUT_MODES = ("synth", "midi")


@dataclasses.dataclass
class Settings:

	"""Runtime settings for a :class:`~pianola.piano.Piano`."""

	input_device: typing.Optional[str] = None
	output_mode: str = "synth"
	midi_output_device: typing.Optional[str] = None
	midi_channel: int = 0

	sample_rate: int = pianola.constants.SAMPLE_RATE
	release_seconds: float = pianola.constants.RELEASE_SECONDS

	debounce_ms: int = pianola.constants.DEBOUNCE_MS
	dedup_retention_ms: int = pianola.constants.DEDUP_RETENTION_MS
	octave_span: int = pianola.constants.OCTAVE_SPAN
	close_epsilon_ms: int = pianola.constants.CLOSE_EPSILON_MS

	max_wait_seconds: float = pianola.constants.MAX_WAIT_SECONDS
	settle_seconds: float = pianola.constants.SETTLE_SECONDS

	delivery_url: typing.Optional[str] = None

	keyboard: bool = False

	osc: bool = False
	osc_receive_port: int = 9000
	osc_send_port: int = 9001
	osc_send_host: str = "127.0.0.1"

	def __post_init__ (self) -> None:

		if self.output_mode not in OUTPUT_MODES:
			raise ValueError(f"output_mode must be one of {OUTPUT_MODES}, got {self.output_mode!r}")

		if not 0 <= self.midi_channel <= 15:
			raise ValueError("midi_channel must be in 0..15")

		if self.debounce_ms < 0 or self.close_epsilon_ms < 0:
			raise ValueError("debounce_ms and close_epsilon_ms cannot be negative")

		if self.max_wait_seconds <= 0:
			raise ValueError("max_wait_seconds must be positive")

	@classmethod
	def from_dict (cls, data: typing.Mapping[str, typing.Any]) -> "Settings":

		"""Build settings from a mapping, ignoring (and warning about) unknown keys."""

		known = {field.name for field in dataclasses.fields(cls)}
		unknown = sorted(set(data) - known)

		if unknown:
			logger.warning(f"Ignoring unknown config keys: {', '.join(unknown)}")

		try:
			return cls(**{key: value for key, value in data.items() if key in known})
		except TypeError as exc:
			raise ValueError(f"Invalid config value: {exc}") from exc


def load_config (config_path: str = 'pianola.yaml') -> Settings:

	"""
	Load settings from a YAML file, falling back to defaults if it is missing.

	Raises ``ValueError`` if the file is not a YAML mapping or holds invalid values.
	"""

	if not os.path.exists(config_path):
		logger.warning(f"Config file {config_path} not found. Using defaults.")
		return Settings()

	with open(config_path, 'r') as f:
		try:
			data = yaml.safe_load(f)
		except yaml.YAMLError as exc:
			raise ValueError(f"Config file {config_path} is not valid YAML: {exc}") from exc

	if data is None:
		return Settings()

	if not isinstance(data, dict):
		raise ValueError(f"Config file {config_path} must contain a mapping")

	logger.info(f"Loaded config from {config_path}")

	return Settings.from_dict(data)
