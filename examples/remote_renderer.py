"""Drive the piano from a MIDI keyboard and deliver takes to a web app.

- MIDI input: the first available input device (set ``input_device`` to pick one).
- Delivery: each take is sent to a WebSocket endpoint as
  ``{"event": "send_midi_sequence", "sequence": [...]}``.
- OSC: key, pedal, octave and playback state are broadcast to 127.0.0.1:9001
  so an external renderer can draw the keyboard.  Send ``/send`` or ``/play``
  to port 9000 to finish or replay a take.
"""

import logging

import pianola

logging.basicConfig(level=logging.INFO)

settings = pianola.Settings(
	input_device = "Digital Piano",
	delivery_url = "ws://localhost:4000/piano",
	osc = True,
)

piano = pianola.Piano(settings)

piano.on_event("sequence", lambda sequence: print(f"Take finished: {len(sequence)} events, {sequence.duration} ms"))

if __name__ == "__main__":
	piano.run()
