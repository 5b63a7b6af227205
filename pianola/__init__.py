
"""
Pianola - a playable, recordable software piano for Python.

Play from a MIDI keyboard, the computer keyboard or OSC; every key press and
pedal change is captured with millisecond timestamps, finalized into a closed
sequence, delivered wherever it needs to go, and replayed with the original
timing and sustain behaviour.

- **Live input.** Raw controller messages are decoded, deduplicated and
  transposed (octave shift buttons) before they reach the recording session.
- **Built-in sound.** A polyphonic triangle-wave tone generator with short
  attack/release envelopes, or forward everything to a MIDI port instead.
- **Sustain-aware recording.** Held and pedal-sustained notes are tracked
  separately, and a finalized recording never leaves a note hanging.
- **Faithful playback.** Interruptible, drift-free replay that re-derives the
  pedal state, with long gaps capped so corrupt timestamps cannot stall it.
- **Delivery and export.** JSON export, Standard MIDI Files, and a WebSocket
  delivery hook.

Minimal example:

```python
import pianola

piano = pianola.Piano(pianola.load_config("pianola.yaml"))
piano.on_event("sequence", lambda sequence: print(sequence.to_json()))
piano.run()
```

Package-level exports: ``Piano``, ``Settings``, ``load_config``,
``Sequence``, ``NoteOn``, ``NoteOff``, ``SustainOn``, ``SustainOff``,
``InputDecoder``, ``RecordingSession``, ``Player``, ``ToneGenerator``,
``MidiOutput``, ``SequenceStore``, ``WebSocketDelivery``.
"""

import pianola.config
import pianola.decoder
import pianola.events
import pianola.midi_utils
import pianola.piano
import pianola.player
import pianola.session
import pianola.store
import pianola.tone_generator


Piano = pianola.piano.Piano
Settings = pianola.config.Settings
load_config = pianola.config.load_config

Sequence = pianola.events.Sequence
NoteOn = pianola.events.NoteOn
NoteOff = pianola.events.NoteOff
SustainOn = pianola.events.SustainOn
SustainOff = pianola.events.SustainOff

InputDecoder = pianola.decoder.InputDecoder
RecordingSession = pianola.session.RecordingSession
Player = pianola.player.Player
ToneGenerator = pianola.tone_generator.ToneGenerator
MidiOutput = pianola.midi_utils.MidiOutput
SequenceStore = pianola.store.SequenceStore
WebSocketDelivery = pianola.store.WebSocketDelivery
