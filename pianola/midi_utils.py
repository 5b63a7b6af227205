import logging
import typing

import mido

import pianola.constants
import pianola.events

logger = logging.getLogger(__name__)


def select_output_device(device_name: typing.Optional[str] = None) -> typing.Tuple[typing.Optional[str], typing.Optional[typing.Any]]:
    """
    Open a MIDI output port for the ``midi`` output mode.

    If `device_name` is provided, opens that device.  Otherwise the first
    available output is used.  Unlike an input, an output is requested
    explicitly, so a missing device is logged as an error.

    Returns:
        A tuple of (device_name, midi_out_object) or (None, None) on failure.
    """
    try:
        outputs = mido.get_output_names()
        logger.info(f"Available MIDI outputs: {outputs}")

        if not outputs:
            logger.error("No MIDI output devices found.")
            return None, None

        if device_name is None:
            device_name = outputs[0]
            logger.info(f"No MIDI output named - using '{device_name}'")

        elif device_name not in outputs:
            logger.error(
                f"MIDI output device '{device_name}' not found. "
                f"Available devices: {outputs}"
            )
            return None, None

        midi_out = mido.open_output(device_name)
        logger.info(f"Opened MIDI output: {device_name}")
        return device_name, midi_out

    except Exception as e:
        logger.error(f"Failed to open MIDI output: {e}")
        return None, None


def select_input_device(device_name: typing.Optional[str] = None, callback: typing.Optional[typing.Callable] = None) -> typing.Tuple[typing.Optional[str], typing.Optional[typing.Any]]:
    """
    Open the MIDI controller input.

    If `device_name` is None, returns None without prompting (the computer
    keyboard and OSC remain available).  If the named device is not found,
    falls back to the first available input and logs a warning, which keeps
    configs portable between machines.

    Returns:
        A tuple of (device_name, midi_in_object) or (None, None) on failure.
    """
    if device_name is None:
        return None, None

    try:
        inputs = mido.get_input_names()
        logger.info(f"Available MIDI inputs: {inputs}")

        target = device_name

        if target not in inputs:
            logger.warning(f"MIDI input device '{target}' not found.")
            if inputs:
                target = inputs[0]
                logger.warning(f"Fallback to: {target}")
            else:
                return None, None

        midi_in = mido.open_input(target, callback=callback)
        logger.info(f"Opened MIDI input: {target}")
        return target, midi_in

    except Exception as e:
        logger.error(f"Failed to open MIDI input: {e}")
        return None, None


class MidiOutput:
    """
    Voice output that plays notes on a MIDI port instead of the tone generator.

    Follows the same start/stop/stop_all contract as
    :class:`pianola.tone_generator.ToneGenerator`: starting a sounding pitch
    retriggers it, and failures are logged rather than raised.
    """

    def __init__(self, device_name: typing.Optional[str] = None, channel: int = 0, velocity: int = pianola.constants.DEFAULT_VELOCITY) -> None:

        if not 0 <= channel <= 15:
            raise ValueError("MIDI channel must be in 0..15")

        self.device_name = device_name
        self.channel = channel
        self.velocity = velocity
        self.midi_out: typing.Optional[typing.Any] = None
        self._sounding: typing.Set[int] = set()

    @property
    def available(self) -> bool:
        return self.midi_out is not None

    @property
    def active_pitches(self) -> typing.List[int]:
        return sorted(self._sounding)

    def open(self) -> bool:
        """Open the port.  Returns False (and stays silent) if none can be opened."""

        if self.midi_out is not None:
            return True

        device_name, midi_out = select_output_device(self.device_name)

        if device_name is None:
            return False

        self.device_name = device_name
        self.midi_out = midi_out
        return True

    def close(self) -> None:
        self.stop_all()

        if self.midi_out is not None:
            self.midi_out.close()
            self.midi_out = None

    def start(self, pitch: int) -> None:
        if not pianola.events.is_valid_pitch(pitch):
            raise ValueError(f"Pitch must be an integer in {pianola.constants.PITCH_MIN}..{pianola.constants.PITCH_MAX}, got {pitch!r}")

        if pitch in self._sounding:
            self._send('note_off', note=pitch, velocity=0)

        self._sounding.add(pitch)
        self._send('note_on', note=pitch, velocity=self.velocity)

    def stop(self, pitch: int) -> bool:
        if pitch not in self._sounding:
            return False

        self._sounding.discard(pitch)
        self._send('note_off', note=pitch, velocity=0)
        return True

    def stop_all(self) -> None:
        """Release tracked notes, then send All Notes Off and All Sound Off."""

        for pitch in sorted(self._sounding):
            self._send('note_off', note=pitch, velocity=0)

        self._sounding.clear()

        self._send('control_change', control=123, value=0)
        self._send('control_change', control=120, value=0)

    def _send(self, message_type: str, **kwargs: typing.Any) -> None:
        if self.midi_out is None:
            return

        try:
            self.midi_out.send(mido.Message(message_type, channel=self.channel, **kwargs))
        except Exception:
            logger.exception("MIDI send failed (device may be disconnected)")
