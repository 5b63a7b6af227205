"""Constants shared across Pianola.

Timing values are in milliseconds unless the name says otherwise.  Event
timestamps are integer milliseconds from a monotonic clock.
"""

# Instrument range (MIDI note numbers).
PITCH_MIN = 0
PITCH_MAX = 127

A4 = 69
A4_FREQUENCY = 440.0

# Status nibbles.
STATUS_NOTE_OFF = 0x8
STATUS_NOTE_ON = 0x9
STATUS_CONTROL_CHANGE = 0xB

# Controllers.
CC_SUSTAIN = 64
SUSTAIN_THRESHOLD = 64
CC_OCTAVE_DOWN = 102
CC_OCTAVE_UP = 103

# Transposition span, in octaves either side of zero.
OCTAVE_SPAN = 2

# Velocity used when a note is sent to a MIDI port or written to a file.
DEFAULT_VELOCITY = 98

# Input deduplication.
DEBOUNCE_MS = 30
DEDUP_RETENTION_MS = 1000
DEDUP_PURGE_INTERVAL_MS = 250

# Offset of synthetic events appended when a sequence is closed.
CLOSE_EPSILON_MS = 50

# Tone generator envelope and stream settings.
SAMPLE_RATE = 44100
BLOCK_SIZE = 512
ATTACK_SECONDS = 0.01
RELEASE_SECONDS = 0.05
VOICE_GAIN = 0.3

# Playback.
MAX_WAIT_SECONDS = 2.0
SETTLE_SECONDS = 0.05

# Computer keyboard layout: home row plays white keys from middle C, the row
# above plays the black keys.
KEY_NOTES = {
	"a": 60,
	"w": 61,
	"s": 62,
	"e": 63,
	"d": 64,
	"f": 65,
	"t": 66,
	"g": 67,
	"y": 68,
	"h": 69,
	"u": 70,
	"j": 71,
	"k": 72,
	"o": 73,
	"l": 74,
	"p": 75,
	";": 76,
	"'": 77,
}

KEY_SUSTAIN = "\t"
KEY_OCTAVE_DOWN = "z"
KEY_OCTAVE_UP = "x"
KEY_SEND = "\n"
KEY_PLAY = " "
KEY_RESET = "r"
