import argparse
import logging
import random
import sys
from typing import List, Optional, Tuple, Union

from .audio import AudioError, BounceVoice, SegmentVoice
from .batch import BatchRecorder
from .capture import CaptureError
from .config import AppConfig, load_config
from .export import bundle_artifacts, save_artifact
from .logging_config import setup_logging
from .render import LabelEntity, SurfaceError
from .scheduler import Scheduler, SimulatedScheduler
from .simulation import CircleSimulation, new_surface
from .videoinfo import inspect_video

log = logging.getLogger(__name__)

DEFAULT_LABEL = "@singing.ball"


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--config", help="JSON file with tuning/simulation/capture/batch sections")
    p.add_argument("--width", type=int, help="Surface width in px (default 1080)")
    p.add_argument("--height", type=int, help="Surface height in px (default 1920)")
    p.add_argument("--gravity", type=float, help="Gravity per tick (default 0.4)")
    p.add_argument("--velocity-increase", type=float, help="Speed boost per bounce, as a rate (default 0.02)")
    p.add_argument("--velocity-decay", type=float, help="Velocity multiplier per tick (default 0.9995)")
    p.add_argument("--growth-rate", type=float, help="Radius growth per bounce, as a rate (default 0.015)")
    p.add_argument("--label", action="append", dest="labels", metavar="TEXT",
                   help=f"Overlay text; repeat for more lines (default '{DEFAULT_LABEL}')")
    p.add_argument("--font", default="Montserrat", help="Label font family")
    p.add_argument("--notes", default="", help="Bounce note sequence, e.g. C5,D5,E5 (default: random beeps)")
    p.add_argument("--audio", action="append", dest="audio_files", metavar="WAV",
                   help="WAV file cut into segments, one segment per bounce; repeat to queue more (replaces beeps)")
    p.add_argument("--segment", type=float, default=0.3, help="Segment length in seconds for --audio (default 0.3)")
    p.add_argument("--no-audio", action="store_true", help="Record video only")
    p.add_argument("--seed", type=int, help="Seed for colors and beeps")
    p.add_argument("--fourcc", help="OpenCV codec fourcc (default mp4v)")
    p.add_argument("--ext", help="Container extension (default .mp4)")
    p.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    p.add_argument("--log-file", help="Also write logs to this file")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="singing-ball", description="Bouncing ball in a ring, captured to video")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("gui", help="Open the live window")
    _add_common(p)
    p.add_argument("out_dir", nargs="?", default="finished")

    p = sub.add_parser("record", help="Render one recording headless")
    _add_common(p)
    p.add_argument("out_dir", nargs="?", default="finished")
    p.add_argument("--duration", type=float, help="Seconds to record (default 10)")

    p = sub.add_parser("batch", help="Render N independent recordings headless and zip them")
    _add_common(p)
    p.add_argument("out_dir", nargs="?", default="finished")
    p.add_argument("--count", type=int, help="How many recordings (default 1)")
    p.add_argument("--duration", type=float, help="Seconds per recording (default 10)")
    p.add_argument("--pause", type=float, help="Seconds between recordings (default 1)")

    p = sub.add_parser("info", help="Print resolution/frames/fps of a video")
    p.add_argument("path")
    return parser


def resolve_config(args: argparse.Namespace) -> AppConfig:
    cfg = load_config(args.config)
    sim, tuning, cap, batch = cfg.simulation, cfg.tuning, cfg.capture, cfg.batch
    if args.width:
        sim.width = args.width
    if args.height:
        sim.height = args.height
    if args.gravity is not None:
        tuning.set_gravity(args.gravity)
    if args.velocity_increase is not None:
        tuning.set_velocity_increase(args.velocity_increase)
    if args.velocity_decay is not None:
        tuning.set_velocity_decay(args.velocity_decay)
    if args.growth_rate is not None:
        tuning.set_growth_rate(args.growth_rate)
    if args.fourcc:
        cap.fourcc = args.fourcc
    if args.ext:
        cap.extension = args.ext if args.ext.startswith(".") else "." + args.ext
    if getattr(args, "duration", None) is not None:
        batch.duration = args.duration
    if getattr(args, "count", None) is not None:
        batch.count = args.count
    if getattr(args, "pause", None) is not None:
        batch.pause = args.pause
    return cfg


def default_labels(texts: Optional[List[str]], width: int, height: int, font: str) -> List[LabelEntity]:
    texts = texts if texts else [DEFAULT_LABEL]
    return [
        LabelEntity(id=f"label-{i}", text=t, x=width / 2.0, y=height / 2.0 + i * 60, font=font, size=30)
        for i, t in enumerate(texts)
    ]


def build_simulation(args: argparse.Namespace, cfg: AppConfig,
                     scheduler: Scheduler) -> Tuple[CircleSimulation, Optional[Union[BounceVoice, SegmentVoice]]]:
    sim_cfg = cfg.simulation
    surface = new_surface(sim_cfg.width, sim_cfg.height)
    labels = default_labels(args.labels, sim_cfg.width, sim_cfg.height, args.font)
    sim = CircleSimulation(surface, labels, scheduler=scheduler, config=sim_cfg, tuning=cfg.tuning,
                           capture_config=cfg.capture, rng=random.Random(args.seed))
    voice = None
    if args.no_audio:
        return sim, voice
    if args.audio_files:
        voice = SegmentVoice(sim.get_audio_destination(), segment_duration=args.segment)
        for path in args.audio_files:
            voice.load_file(path)
    else:
        voice = BounceVoice(sim.get_audio_destination(), notes=args.notes, seed=args.seed)
    sim.set_collision_callback(voice.play_next)
    return sim, voice


def run_record(args: argparse.Namespace, cfg: AppConfig) -> str:
    scheduler = SimulatedScheduler()
    sim, voice = build_simulation(args, cfg, scheduler)
    duration = cfg.batch.duration
    result = {}
    sim.start()
    stream = voice.get_audio_stream() if voice else None
    sim.start_recording(lambda a: result.setdefault("artifact", a), stream)
    scheduler.call_later(duration * 1000.0, sim.stop_recording)
    if not scheduler.run_until(lambda: "artifact" in result, timeout=duration + 5.0):
        raise SystemExit("Recording did not finish")
    sim.stop()
    return save_artifact(result["artifact"], args.out_dir)


def run_batch(args: argparse.Namespace, cfg: AppConfig) -> str:
    scheduler = SimulatedScheduler()
    sim, voice = build_simulation(args, cfg, scheduler)
    batch_cfg = cfg.batch
    recorder = BatchRecorder(sim, audio=voice, pause=batch_cfg.pause)
    outcome = {}

    def progress(done: int, total: int) -> None:
        log.info("[%d/%d] recorded", done, total)

    sim.start()
    recorder.start(batch_cfg.count, batch_cfg.duration,
                   on_finished=lambda arts: outcome.setdefault("artifacts", arts),
                   on_error=lambda e: outcome.setdefault("error", e),
                   on_progress=progress)
    budget = batch_cfg.count * (batch_cfg.duration + batch_cfg.pause) + 5.0
    scheduler.run_until(lambda: bool(outcome), timeout=budget)
    sim.stop()
    if "error" in outcome:
        raise SystemExit(f"Batch failed: {outcome['error']}")
    if "artifacts" not in outcome:
        raise SystemExit("Batch did not finish")
    return bundle_artifacts(outcome["artifacts"], args.out_dir)


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "info":
        try:
            print(inspect_video(args.path).describe())
        except ValueError as e:
            print(f"error: {e}", file=sys.stderr)
            sys.exit(1)
        return

    setup_logging(getattr(logging, args.log_level), args.log_file)
    try:
        cfg = resolve_config(args)
    except (OSError, ValueError) as e:
        raise SystemExit(f"Bad config: {e}")

    if args.command == "gui":
        from .gui import main as gui_main
        labels = default_labels(args.labels, cfg.simulation.width, cfg.simulation.height, args.font)
        gui_main(cfg, labels, out_dir=args.out_dir, notes=args.notes, seed=args.seed, audio=not args.no_audio,
                 audio_files=args.audio_files or [], segment=args.segment)
        return

    try:
        if args.command == "record":
            out = run_record(args, cfg)
        else:
            out = run_batch(args, cfg)
    except (AudioError, CaptureError, SurfaceError) as e:
        raise SystemExit(f"{args.command} failed: {e}")
    print(out)


if __name__ == "__main__":
    main()
