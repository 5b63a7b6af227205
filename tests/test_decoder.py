import mido
import pytest

import pianola.decoder
import pianola.events


@pytest.fixture
def decoder (clock) -> pianola.decoder.InputDecoder:

	return pianola.decoder.InputDecoder(clock=clock)


def test_note_on_and_off (decoder: pianola.decoder.InputDecoder) -> None:

	assert decoder.decode((0x90, 60, 100), timestamp=0) == pianola.events.NoteOn(60, 0)
	assert decoder.decode((0x80, 60, 0), timestamp=100) == pianola.events.NoteOff(60, 100)


def test_note_on_with_zero_velocity_is_note_off (decoder: pianola.decoder.InputDecoder) -> None:

	decoder.decode((0x90, 60, 100), timestamp=0)

	assert decoder.decode((0x90, 60, 0), timestamp=100) == pianola.events.NoteOff(60, 100)


def test_accepts_mido_messages_and_bytes (decoder: pianola.decoder.InputDecoder) -> None:

	assert decoder.decode(mido.Message('note_on', channel=3, note=62, velocity=90), timestamp=0) == pianola.events.NoteOn(62, 0)
	assert decoder.decode(bytes([0x83, 62, 0]), timestamp=100) == pianola.events.NoteOff(62, 100)


def test_uses_clock_when_no_timestamp (decoder: pianola.decoder.InputDecoder, clock) -> None:

	clock.now = 1234

	assert decoder.decode((0x90, 60, 100)) == pianola.events.NoteOn(60, 1234)


# ---------------------------------------------------------------------------
# Deduplication
# ---------------------------------------------------------------------------

def test_duplicate_within_window_is_dropped (decoder: pianola.decoder.InputDecoder) -> None:

	"""Two identical messages 5 ms apart are one physical action."""

	events = [decoder.decode((0x90, 60, 100), timestamp=0), decoder.decode((0x90, 60, 100), timestamp=5)]

	assert [event for event in events if event is not None] == [pianola.events.NoteOn(60, 0)]


def test_duplicate_outside_window_is_kept (decoder: pianola.decoder.InputDecoder) -> None:

	"""Two identical messages 50 ms apart are two actions."""

	events = [decoder.decode((0x90, 60, 100), timestamp=0), decoder.decode((0x90, 60, 100), timestamp=50)]

	assert events == [pianola.events.NoteOn(60, 0), pianola.events.NoteOn(60, 50)]


def test_different_messages_are_not_deduplicated (decoder: pianola.decoder.InputDecoder) -> None:

	assert decoder.decode((0x90, 60, 100), timestamp=0) is not None
	assert decoder.decode((0x80, 60, 0), timestamp=2) is not None


def test_dedup_cache_is_purged () -> None:

	decoder = pianola.decoder.InputDecoder(debounce_ms=30, retention_ms=100, purge_interval_ms=10)

	decoder.decode((0x90, 60, 100), timestamp=0)
	decoder.decode((0x90, 61, 100), timestamp=500)

	assert (0x90, 60, 100) not in decoder._recent
	assert (0x90, 61, 100) in decoder._recent


def test_invalid_settings_raise () -> None:

	with pytest.raises(ValueError):
		pianola.decoder.InputDecoder(debounce_ms=-1)

	with pytest.raises(ValueError):
		pianola.decoder.InputDecoder(debounce_ms=100, retention_ms=50)


# ---------------------------------------------------------------------------
# Malformed input
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("message", [
	(0x90, 60),
	(0x90, 60, 100, 1),
	(0x90, 200, 100),
	(0x90, 60, -1),
	(0x90, "60", 100),
	None,
	42,
])
def test_malformed_messages_are_dropped (decoder: pianola.decoder.InputDecoder, message: object) -> None:

	assert decoder.decode(message, timestamp=0) is None  # type: ignore[arg-type]


def test_unsupported_message_types_are_ignored (decoder: pianola.decoder.InputDecoder) -> None:

	assert decoder.decode((0xE0, 0, 64), timestamp=0) is None
	assert decoder.decode((0xB0, 7, 100), timestamp=0) is None


# ---------------------------------------------------------------------------
# Sustain and octave controllers
# ---------------------------------------------------------------------------

def test_sustain_controller_emits_only_on_transitions (decoder: pianola.decoder.InputDecoder) -> None:

	assert decoder.decode((0xB0, 64, 127), timestamp=0) == pianola.events.SustainOn(0)
	assert decoder.decode((0xB0, 64, 100), timestamp=100) is None
	assert decoder.decode((0xB0, 64, 10), timestamp=200) == pianola.events.SustainOff(200)
	assert decoder.decode((0xB0, 64, 0), timestamp=300) is None


def test_octave_buttons_shift_transposition (decoder: pianola.decoder.InputDecoder) -> None:

	assert decoder.decode((0xB0, 103, 127), timestamp=0) is None
	assert decoder.octave == 1
	assert decoder.decode((0xB0, 103, 0), timestamp=10) is None
	assert decoder.octave == 1

	assert decoder.decode((0x90, 60, 100), timestamp=100) == pianola.events.NoteOn(72, 100)


def test_octave_is_clamped (decoder: pianola.decoder.InputDecoder) -> None:

	for _ in range(5):
		decoder.shift_octave(-1)

	assert decoder.octave == -2
	assert decoder.transposition == -24


def test_note_off_releases_pitch_used_by_note_on (decoder: pianola.decoder.InputDecoder) -> None:

	"""Changing octave while a key is held does not strand its note."""

	decoder.decode((0x90, 60, 100), timestamp=0)
	decoder.shift_octave(1)

	assert decoder.decode((0x80, 60, 0), timestamp=100) == pianola.events.NoteOff(60, 100)


def test_transposed_out_of_range_note_is_dropped (decoder: pianola.decoder.InputDecoder) -> None:

	decoder.shift_octave(2)

	assert decoder.decode((0x90, 120, 100), timestamp=0) is None


def test_reset_keeps_octave (decoder: pianola.decoder.InputDecoder) -> None:

	decoder.shift_octave(1)
	decoder.decode((0xB0, 64, 127), timestamp=0)
	decoder.reset()

	assert decoder.octave == 1
	assert decoder.sustain is False
	assert decoder.decode((0xB0, 64, 127), timestamp=5) == pianola.events.SustainOn(5)
