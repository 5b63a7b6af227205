import asyncio
import time

import pytest

import pianola.events
import pianola.player


NoteOn = pianola.events.NoteOn
NoteOff = pianola.events.NoteOff
SustainOn = pianola.events.SustainOn
SustainOff = pianola.events.SustainOff


# ---------------------------------------------------------------------------
# build_timeline
# ---------------------------------------------------------------------------

def test_timeline_offsets_from_first_note () -> None:

	sequence = pianola.events.Sequence((SustainOn(900), NoteOn(60, 1000), NoteOff(60, 1250)))

	timeline = pianola.player.build_timeline(sequence)

	assert timeline == [(0.0, SustainOn(900)), (0.0, NoteOn(60, 1000)), (0.25, NoteOff(60, 1250))]


def test_timeline_caps_long_gaps () -> None:

	sequence = pianola.events.Sequence((NoteOn(60, 0), NoteOff(60, 100), NoteOn(62, 60_000), NoteOff(62, 60_100)))

	offsets = [offset for offset, _ in pianola.player.build_timeline(sequence, max_wait_seconds=2.0)]

	assert offsets == pytest.approx([0.0, 0.1, 2.1, 2.2])


def test_timeline_sorts_by_timestamp_stably () -> None:

	sequence = pianola.events.Sequence((NoteOn(62, 10), NoteOn(60, 0), NoteOff(60, 10), NoteOff(62, 20)))

	events = [event for _, event in pianola.player.build_timeline(sequence)]

	assert events == [NoteOn(60, 0), NoteOn(62, 10), NoteOff(60, 10), NoteOff(62, 20)]


def test_timeline_without_notes_is_empty () -> None:

	assert pianola.player.build_timeline(pianola.events.Sequence((SustainOn(0), SustainOff(10)))) == []


# ---------------------------------------------------------------------------
# Playback
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_sustain_holds_note_until_pedal_up (output) -> None:

	"""The note released under the pedal stops at the pedal-up time, not at its key-up time."""

	player = pianola.player.Player(output=output)
	sequence = pianola.events.Sequence((NoteOn(60, 0), SustainOn(100), NoteOff(60, 200), SustainOff(400)))

	await player.play(sequence)

	held = output.time_of("stop", 60) - output.time_of("start", 60)

	assert 0.35 <= held < 0.6
	assert not player.playing
	assert output.sounding == set()
	assert output.names()[-1] == ("stop_all", None)


@pytest.mark.asyncio
async def test_note_without_pedal_stops_at_note_off (output) -> None:

	player = pianola.player.Player(output=output)

	await player.play([NoteOn(60, 0), NoteOff(60, 100)])

	held = output.time_of("stop", 60) - output.time_of("start", 60)

	assert 0.08 <= held < 0.3


@pytest.mark.asyncio
async def test_stop_cancels_promptly (output) -> None:

	player = pianola.player.Player(output=output)

	await player.start(pianola.events.Sequence((NoteOn(60, 0), NoteOff(60, 1500))))
	await asyncio.sleep(0.05)

	assert player.playing
	assert output.sounding == {60}

	started = time.monotonic()
	await player.stop()

	assert time.monotonic() - started < 0.2
	assert not player.playing
	assert output.sounding == set()
	assert ("stop", 60) not in output.names()


@pytest.mark.asyncio
async def test_stop_when_idle_leaves_output_alone (output) -> None:

	player = pianola.player.Player(output=output)

	await player.stop()

	assert output.names() == []


@pytest.mark.asyncio
async def test_long_gap_is_capped (output) -> None:

	player = pianola.player.Player(output=output, max_wait_seconds=0.1)

	started = time.monotonic()
	await player.play([NoteOn(60, 0), NoteOff(60, 60_000)])

	assert time.monotonic() - started < 0.5
	assert ("stop", 60) in output.names()


@pytest.mark.asyncio
async def test_unclosed_sequence_is_closed_before_playback (output) -> None:

	player = pianola.player.Player(output=output, close_epsilon_ms=20)

	await player.play([NoteOn(60, 0), SustainOn(10)])

	assert ("stop", 60) in output.names()
	assert output.sounding == set()


@pytest.mark.asyncio
async def test_failing_event_is_skipped (output) -> None:

	output.fail_on = {61}
	player = pianola.player.Player(output=output)

	await player.play([NoteOn(61, 0), NoteOn(62, 10), NoteOff(61, 20), NoteOff(62, 30)])

	assert ("start", 62) in output.names()
	assert ("stop", 62) in output.names()
	assert output.sounding == set()


@pytest.mark.asyncio
async def test_malformed_items_are_skipped (output) -> None:

	player = pianola.player.Player(output=output)

	await player.play([
		{"type": "noteOn", "note": 60, "timestamp": 0},
		{"type": "noteOn", "note": 500, "timestamp": 5},
		{"type": "noteOff", "note": 60, "timestamp": 10},
	])

	assert output.names()[:2] == [("start", 60), ("stop", 60)]


@pytest.mark.asyncio
async def test_new_playback_replaces_running_one (output) -> None:

	player = pianola.player.Player(output=output, settle_seconds=0.01)

	await player.start([NoteOn(60, 0), NoteOff(60, 1500)])
	await asyncio.sleep(0.02)
	await player.start([NoteOn(64, 0), NoteOff(64, 20)])

	assert player.task is not None
	await player.task

	names = output.names()

	assert names.index(("stop_all", None)) < names.index(("start", 64))
	assert output.sounding == set()


def _running_playbacks () -> list[asyncio.Task]:

	return [task for task in asyncio.all_tasks() if task.get_coro().__qualname__ == "Player._run" and not task.done()]


@pytest.mark.asyncio
async def test_concurrent_starts_leave_one_playback (output) -> None:

	"""Two overlapping starts end with a single playback owning the output."""

	player = pianola.player.Player(output=output, settle_seconds=0.01)

	await player.start([NoteOn(60, 0), NoteOff(60, 1500)])
	await asyncio.sleep(0.02)

	await asyncio.gather(
		player.start([NoteOn(62, 0), NoteOff(62, 800)]),
		player.start([NoteOn(64, 0), NoteOff(64, 800)]),
	)
	await asyncio.sleep(0.02)

	assert _running_playbacks() == [player.task]
	assert player.sounding == [64]

	await player.stop()

	assert _running_playbacks() == []
	assert not player.playing
	assert output.sounding == set()


@pytest.mark.asyncio
async def test_stop_during_settle_cancels_pending_start (output) -> None:

	player = pianola.player.Player(output=output, settle_seconds=0.05)

	await player.start([NoteOn(60, 0), NoteOff(60, 1500)])
	await asyncio.sleep(0.02)

	pending = asyncio.create_task(player.start([NoteOn(64, 0), NoteOff(64, 800)]))
	await asyncio.sleep(0.02)
	await player.stop()
	await pending

	assert not player.playing
	assert _running_playbacks() == []
	assert ("start", 64) not in output.names()


@pytest.mark.asyncio
async def test_start_and_stop_events_are_emitted (output) -> None:

	player = pianola.player.Player(output=output)
	received: list[str] = []

	player.on_event("start", lambda: received.append("start"))
	player.on_event("note_on", lambda pitch: received.append(f"on {pitch}"))
	player.on_event("note_off", lambda pitch: received.append(f"off {pitch}"))
	player.on_event("stop", lambda: received.append("stop"))

	await player.play([NoteOn(60, 0), NoteOff(60, 10)])

	assert received == ["start", "on 60", "off 60", "stop"]


@pytest.mark.asyncio
async def test_empty_sequence_finishes_immediately (output) -> None:

	player = pianola.player.Player(output=output)

	await player.play([])

	assert not player.playing
	assert output.names() == [("stop_all", None)]


def test_invalid_settings_raise (output) -> None:

	with pytest.raises(ValueError):
		pianola.player.Player(output=output, max_wait_seconds=0)

	with pytest.raises(ValueError):
		pianola.player.Player(output=output, settle_seconds=-1)
