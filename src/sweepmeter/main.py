"""CLI entry and command wiring."""

import argparse
import logging
import sys

from sweepmeter import chirp, record, wav
from sweepmeter.constants import DEFAULT_PLOT_WIDTH, FS, ExitCode
from sweepmeter.errors import AlreadyRunning, MeasurementError
from sweepmeter.models import ResponseCurve, SweepSpec
from sweepmeter.plot import format_point, plot_width, save_plot, MAX_LABEL, RMS_LABEL
from sweepmeter.response import reduce_response
from sweepmeter.session import SessionManager

logger = logging.getLogger(__name__)


def print_status(message: str) -> None:
    print(message, flush=True)


def summarize(curve: ResponseCurve) -> None:
    print(f"{len(curve)} points")
    if not len(curve):
        return
    for index in (0, len(curve) // 2, len(curve) - 1):
        print("  " + format_point(MAX_LABEL, curve.peak[index].frequency, curve.peak[index].level_db))
        print("  " + format_point(RMS_LABEL, curve.rms[index].frequency, curve.rms[index].level_db))


def resolve_width(args) -> int:
    if args.width is not None:
        return args.width
    if args.plot:
        return plot_width()
    return DEFAULT_PLOT_WIDTH


def run_measure(args) -> ExitCode:
    backend = record.LoopbackBackend() if args.loopback else record.SoundDeviceBackend()
    with SessionManager(backend=backend, status=print_status) as manager:
        try:
            curve = manager.start(resolve_width(args))
        except AlreadyRunning:
            return ExitCode.ALREADY_RUNNING
        except MeasurementError:
            return ExitCode.MEASUREMENT_FAILED
        if args.save:
            wav.write_wav(args.save, manager.last_buffer.samples, manager.last_buffer.sample_rate)
    summarize(curve)
    if args.plot:
        save_plot(curve, args.plot, title="Chirp response")
    return ExitCode.OK


def run_analyze(args) -> ExitCode:
    try:
        buffer = wav.read_wav(args.wav)
    except MeasurementError as err:
        print_status(f"Error processing audio: {err.message}")
        return ExitCode.MEASUREMENT_FAILED
    curve = reduce_response(buffer, SweepSpec.default(), resolve_width(args))
    summarize(curve)
    if args.plot:
        save_plot(curve, args.plot, title=str(args.wav))
    return ExitCode.OK


def run_generate(args) -> ExitCode:
    sweep = chirp.generate_sweep(SweepSpec.default(), args.fs)
    wav.write_wav(args.wav, sweep, args.fs)
    return ExitCode.OK


def run_devices(args) -> ExitCode:
    print(record.list_devices())
    return ExitCode.OK


COMMANDS = {
    "measure": run_measure,
    "analyze": run_analyze,
    "generate": run_generate,
    "devices": run_devices,
}


def build_parser():
    parser = argparse.ArgumentParser(prog="sweepmeter")
    parser.add_argument("-v", "--verbose", action="count", default=0)
    sub = parser.add_subparsers(dest="command")

    p_measure = sub.add_parser("measure", help="Play the sweep, record it and reduce the response")
    p_measure.add_argument("--width", type=int, help="Number of response bins (plot width in pixels)")
    p_measure.add_argument("--save", help="Save the recording to this WAV file")
    p_measure.add_argument("--plot", help="Save the response plot to this image file")
    p_measure.add_argument("--loopback", action="store_true", help="Record the sweep directly, no audio hardware")

    p_analyze = sub.add_parser("analyze", help="Reduce an existing sweep recording")
    p_analyze.add_argument("wav", help="Recording of the default 10 s, 20 Hz - 20 kHz sweep")
    p_analyze.add_argument("--width", type=int)
    p_analyze.add_argument("--plot")

    p_generate = sub.add_parser("generate", help="Write the sweep to a WAV file")
    p_generate.add_argument("wav")
    p_generate.add_argument("--fs", type=int, default=FS)

    sub.add_parser("devices", help="List audio devices")
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(sys.argv[1:] if argv is None else argv)

    level = logging.WARNING if args.verbose == 0 else logging.INFO if args.verbose == 1 else logging.DEBUG
    logging.basicConfig(level=level, format="%(asctime)s - %(levelname)s - %(message)s", stream=sys.stderr)

    if not args.command:
        parser.print_help()
        return ExitCode.USAGE
    return COMMANDS[args.command](args)


def entrypoint():
    sys.exit(main())


if __name__ == "__main__":
    entrypoint()
