"""Command-line entry point: ``python -m pianola``.

Runs an interactive piano by default.  With ``--play`` it replays a saved
sequence (JSON export or MIDI file) through the tone generator and exits.
"""

import argparse
import asyncio
import logging
import os
import sys
import typing

import pianola.config
import pianola.events
import pianola.midi_file
import pianola.piano


logger = logging.getLogger(__name__)


def load_sequence (path: str) -> pianola.events.Sequence:

	"""Read a sequence from a ``.mid`` / ``.midi`` file or a JSON export."""

	if os.path.splitext(path)[1].lower() in (".mid", ".midi"):
		return pianola.midi_file.load(path)

	with open(path, 'r') as f:
		return pianola.events.Sequence.from_json(f.read(), strict=False)


def export_sequence (sequence: pianola.events.Sequence, path: str) -> None:

	"""Write a sequence as a MIDI file or JSON export, chosen by extension."""

	if os.path.splitext(path)[1].lower() in (".mid", ".midi"):
		pianola.midi_file.save(sequence, path)
	else:
		with open(path, 'w') as f:
			f.write(sequence.to_json())

	logger.info(f"Exported {len(sequence)} events to {path}")


def build_parser () -> argparse.ArgumentParser:

	parser = argparse.ArgumentParser(prog="pianola", description="Playable, recordable software piano")
	parser.add_argument("--config", default="pianola.yaml", help="YAML config file (default: pianola.yaml)")
	parser.add_argument("--input", dest="input_device", help="MIDI input device name")
	parser.add_argument("--output-mode", choices=pianola.config.OUTPUT_MODES, help="Sound output: tone generator or MIDI port")
	parser.add_argument("--midi-output", dest="midi_output_device", help="MIDI output device name (midi output mode)")
	parser.add_argument("--keyboard", dest="keyboard", action="store_true", default=None, help="Play from the computer keyboard")
	parser.add_argument("--no-keyboard", dest="keyboard", action="store_false", help="Disable computer keyboard input")
	parser.add_argument("--osc", dest="osc", action="store_true", default=None, help="Enable the OSC bridge")
	parser.add_argument("--delivery-url", help="WebSocket URL that receives sent recordings")
	parser.add_argument("--play", metavar="FILE", help="Replay a .json or .mid sequence and exit")
	parser.add_argument("--export", metavar="FILE", help="Write the last recording (or the --play sequence) to a .json or .mid file")
	parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Logging level (default: INFO)")
	return parser


def settings_from_args (args: argparse.Namespace) -> pianola.config.Settings:

	"""Load the config file, then apply command-line overrides."""

	settings = pianola.config.load_config(args.config)

	overrides: typing.Dict[str, typing.Any] = {
		"input_device": args.input_device,
		"output_mode": args.output_mode,
		"midi_output_device": args.midi_output_device,
		"keyboard": args.keyboard,
		"osc": args.osc,
		"delivery_url": args.delivery_url,
	}

	for key, value in overrides.items():
		if value is not None:
			setattr(settings, key, value)

	return settings


async def replay (piano: pianola.piano.Piano, sequence: pianola.events.Sequence) -> None:

	piano.open_output()

	try:
		await piano.player.play(sequence)
	finally:
		piano.close_output()


def main () -> None:

	"""
	Main entry point for the pianola application.
	"""

	args = build_parser().parse_args()

	logging.basicConfig(level=getattr(logging, args.log_level))

	try:
		settings = settings_from_args(args)
	except ValueError as exc:
		logger.error(str(exc))
		sys.exit(2)

	piano = pianola.piano.Piano(settings)

	if args.play:

		try:
			sequence = load_sequence(args.play)
		except (OSError, ValueError) as exc:
			logger.error(f"Could not read {args.play}: {exc}")
			sys.exit(1)

		if args.export:
			export_sequence(sequence.closed(settings.close_epsilon_ms), args.export)

		try:
			asyncio.run(replay(piano, sequence))
		except KeyboardInterrupt:
			logger.info("Stopping...")

		return

	logger.info("Pianola starting...")

	piano.run()

	if args.export and piano.last_sequence:
		export_sequence(piano.last_sequence, args.export)


if __name__ == "__main__":
	main()
