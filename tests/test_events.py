import json

import pytest

import pianola.events


NoteOn = pianola.events.NoteOn
NoteOff = pianola.events.NoteOff
SustainOn = pianola.events.SustainOn
SustainOff = pianola.events.SustainOff


def test_event_to_dict_uses_export_keys () -> None:

	"""Note events export their pitch as "note"; pedal events have no note."""

	assert pianola.events.event_to_dict(NoteOn(60, 0)) == {"type": "noteOn", "note": 60, "timestamp": 0}
	assert pianola.events.event_to_dict(SustainOff(400)) == {"type": "sustainOff", "timestamp": 400}


def test_event_from_dict_accepts_whole_float_timestamps () -> None:

	event = pianola.events.event_from_dict({"type": "noteOff", "note": 62, "timestamp": 150.0})

	assert event == NoteOff(62, 150)


@pytest.mark.parametrize("data", [
	{"type": "noteOn", "note": 128, "timestamp": 0},
	{"type": "noteOn", "note": "60", "timestamp": 0},
	{"type": "noteOn", "timestamp": 0},
	{"type": "pitchBend", "timestamp": 0},
	{"type": "sustainOn", "timestamp": 1.5},
	{"type": "sustainOn"},
	["noteOn", 60, 0],
])
def test_event_from_dict_rejects_malformed (data: object) -> None:

	with pytest.raises(ValueError):
		pianola.events.event_from_dict(data)  # type: ignore[arg-type]


def test_is_valid_pitch () -> None:

	assert pianola.events.is_valid_pitch(0)
	assert pianola.events.is_valid_pitch(127)
	assert not pianola.events.is_valid_pitch(-1)
	assert not pianola.events.is_valid_pitch(128)
	assert not pianola.events.is_valid_pitch(True)
	assert not pianola.events.is_valid_pitch(60.0)


# ---------------------------------------------------------------------------
# close_events
# ---------------------------------------------------------------------------

def test_close_events_adds_note_offs_in_pitch_order () -> None:

	"""Dangling notes are closed at last timestamp + epsilon, lowest pitch first."""

	events = [NoteOn(67, 0), NoteOn(60, 10), NoteOn(64, 20)]

	closed = pianola.events.close_events(events, epsilon_ms=50)

	assert closed[3:] == [NoteOff(60, 70), NoteOff(64, 70), NoteOff(67, 70)]


def test_close_events_releases_pedal_after_notes () -> None:

	events = [SustainOn(0), NoteOn(60, 10)]

	closed = pianola.events.close_events(events, epsilon_ms=50)

	assert closed[2:] == [NoteOff(60, 60), SustainOff(60)]


def test_close_events_leaves_closed_list_unchanged () -> None:

	events = [NoteOn(60, 0), SustainOn(100), NoteOff(60, 200), SustainOff(400)]

	assert pianola.events.close_events(events) == events


def test_close_events_uses_last_note_on_for_repeated_pitch () -> None:

	"""A pitch struck again after its note off is dangling again."""

	events = [NoteOn(60, 0), NoteOff(60, 10), NoteOn(60, 20)]

	closed = pianola.events.close_events(events, epsilon_ms=5)

	assert closed[-1] == NoteOff(60, 25)


def test_close_events_empty () -> None:

	assert pianola.events.close_events([]) == []


# ---------------------------------------------------------------------------
# Sequence
# ---------------------------------------------------------------------------

def test_sequence_properties () -> None:

	sequence = pianola.events.Sequence((NoteOn(64, 100), NoteOn(60, 150), NoteOff(60, 300)))

	assert len(sequence) == 3
	assert sequence.duration == 200
	assert sequence.pitches == [60, 64]
	assert not sequence.is_closed
	assert sequence.closed().is_closed


def test_sequence_closed_returns_self_when_already_closed () -> None:

	sequence = pianola.events.Sequence((NoteOn(60, 0), NoteOff(60, 10)))

	assert sequence.closed() is sequence


def test_sequence_json_export () -> None:

	sequence = pianola.events.Sequence((NoteOn(60, 0), SustainOn(100)))

	assert json.loads(sequence.to_json()) == [
		{"type": "noteOn", "note": 60, "timestamp": 0},
		{"type": "sustainOn", "timestamp": 100},
	]

	assert pianola.events.Sequence.from_json(sequence.to_json()) == sequence


def test_from_dicts_strict_reports_index () -> None:

	with pytest.raises(ValueError, match="index 1"):
		pianola.events.Sequence.from_dicts([
			{"type": "noteOn", "note": 60, "timestamp": 0},
			{"type": "noteOn", "note": 999, "timestamp": 5},
		])


def test_from_dicts_lenient_skips_bad_items () -> None:

	sequence = pianola.events.Sequence.from_dicts([
		{"type": "noteOn", "note": 60, "timestamp": 0},
		{"type": "mystery", "timestamp": 5},
		{"type": "noteOff", "note": 60, "timestamp": 10},
	], strict=False)

	assert list(sequence) == [NoteOn(60, 0), NoteOff(60, 10)]


def test_from_json_rejects_non_list () -> None:

	with pytest.raises(ValueError):
		pianola.events.Sequence.from_json('{"type": "noteOn"}')

	with pytest.raises(ValueError):
		pianola.events.Sequence.from_json("not json")


def test_coerce_sequence_accepts_many_shapes () -> None:

	expected = pianola.events.Sequence((NoteOn(60, 0), NoteOff(60, 10)))

	assert pianola.events.coerce_sequence(expected) is expected
	assert pianola.events.coerce_sequence(expected.to_json()) == expected
	assert pianola.events.coerce_sequence(expected.to_dicts()) == expected
	assert pianola.events.coerce_sequence([NoteOn(60, 0), {"type": "noteOff", "note": 60, "timestamp": 10}]) == expected


def test_coerce_sequence_degrades_to_empty () -> None:

	assert len(pianola.events.coerce_sequence(None)) == 0
	assert len(pianola.events.coerce_sequence("[broken")) == 0
	assert len(pianola.events.coerce_sequence(42)) == 0
