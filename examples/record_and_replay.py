"""Record from the computer keyboard, then hear it back.

Play with the home row (``a`` is middle C), hold notes with ``Tab`` (sustain
pedal), shift octaves with ``z`` / ``x``.  Press ``Enter`` to finish the take
and ``Space`` to replay it.  Every finished take is also written to
``take.json`` and ``take.mid`` next to this script.

Note keys latch: press once to hold, press again to release.
"""

import logging
import os

import pianola
import pianola.midi_file

logging.basicConfig(level=logging.INFO)

HERE = os.path.dirname(os.path.abspath(__file__))

# ---------------------------------------------------------------------------
# Piano
# ---------------------------------------------------------------------------

piano = pianola.Piano(pianola.Settings(keyboard=True))

# ---------------------------------------------------------------------------
# Save every finished take
# ---------------------------------------------------------------------------

def save_take (sequence: pianola.Sequence) -> None:

	with open(os.path.join(HERE, "take.json"), "w") as f:
		f.write(sequence.to_json())

	pianola.midi_file.save(sequence, os.path.join(HERE, "take.mid"))


piano.store.add_delivery(save_take)

piano.on_event("octave", lambda octave: print(f"Octave {octave:+d}"))
piano.on_event("playing", lambda playing: print("Playing..." if playing else "Stopped"))

if __name__ == "__main__":
	piano.run()
