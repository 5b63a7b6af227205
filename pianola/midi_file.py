import logging
import typing

import mido

import pianola.constants
import pianola.events


logger = logging.getLogger(__name__)

TICKS_PER_BEAT = 480
DEFAULT_BPM = 120


def save (
	sequence: pianola.events.Sequence,
	filename: str,
	bpm: float = DEFAULT_BPM,
	channel: int = 0,
	velocity: int = pianola.constants.DEFAULT_VELOCITY
) -> None:

	"""Save a sequence as a Standard MIDI File.

	Writes a single-track (type 0) file at 480 ticks per beat.  Millisecond
	timestamps become ticks at the given tempo, measured from the first event.
	The sustain pedal is written as controller 64 (127 down, 0 up).

	Raises ``OSError`` if the file cannot be written.
	"""

	mid = mido.MidiFile(type=0)
	mid.ticks_per_beat = TICKS_PER_BEAT
	track = mido.MidiTrack()
	mid.tracks.append(track)

	tempo = mido.bpm2tempo(bpm)
	track.append(mido.MetaMessage('set_tempo', tempo=tempo, time=0))

	# Sort events by time just in case
	events = sorted(sequence, key=lambda event: event.timestamp)

	if events:
		first = events[0].timestamp
		last_tick = 0

		for event in events:

			tick = int(round(mido.second2tick((event.timestamp - first) / 1000.0, TICKS_PER_BEAT, tempo)))
			delta = max(0, tick - last_tick)
			last_tick = max(last_tick, tick)

			track.append(_to_message(event, channel, velocity, delta))

	track.append(mido.MetaMessage('end_of_track', time=0))

	mid.save(filename)

	logger.info(f"Saved {len(events)} events to {filename}")


def load (filename: str) -> pianola.events.Sequence:

	"""Read a Standard MIDI File into a sequence.

	All tracks are merged.  Note on/off messages and controller 64 become
	events with millisecond timestamps starting at 0; everything else is
	ignored.  The result is not closed.

	Raises ``OSError`` if the file cannot be read and ``ValueError`` if it is
	not a valid MIDI file.
	"""

	try:
		mid = mido.MidiFile(filename)
	except (EOFError, KeyError, IndexError) as exc:
		raise ValueError(f"{filename} is not a valid MIDI file: {exc}") from exc

	events: typing.List[pianola.events.Event] = []
	elapsed = 0.0
	sustain = False

	# Iterating a MidiFile yields messages with delta times in seconds.
	for message in mid:

		elapsed += message.time
		timestamp = int(round(elapsed * 1000))

		if message.type == 'note_on' and message.velocity > 0:
			events.append(pianola.events.NoteOn(pitch=message.note, timestamp=timestamp))

		elif message.type in ('note_on', 'note_off'):
			events.append(pianola.events.NoteOff(pitch=message.note, timestamp=timestamp))

		elif message.type == 'control_change' and message.control == pianola.constants.CC_SUSTAIN:

			down = message.value >= pianola.constants.SUSTAIN_THRESHOLD

			if down != sustain:
				sustain = down
				events.append(pianola.events.SustainOn(timestamp=timestamp) if down else pianola.events.SustainOff(timestamp=timestamp))

	logger.info(f"Loaded {len(events)} events from {filename}")

	return pianola.events.Sequence(tuple(events))


def _to_message (event: pianola.events.Event, channel: int, velocity: int, delta: int) -> mido.Message:

	if isinstance(event, pianola.events.NoteOn):
		return mido.Message('note_on', channel=channel, note=event.pitch, velocity=velocity, time=delta)

	if isinstance(event, pianola.events.NoteOff):
		return mido.Message('note_off', channel=channel, note=event.pitch, velocity=0, time=delta)

	value = 127 if isinstance(event, pianola.events.SustainOn) else 0

	return mido.Message('control_change', channel=channel, control=pianola.constants.CC_SUSTAIN, value=value, time=delta)
