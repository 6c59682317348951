"""Command-line entry point: render one overlay job and print its events."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from kmloverlay.config import get_settings
from kmloverlay.schemas.events import DoneEvent, ErrorEvent, LogEvent, ProgressEvent
from kmloverlay.schemas.options import GaugeOptions, InfoPanelOptions, JobSpec, MiniMapOptions
from kmloverlay.services.job_manager import JobManager


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="kmloverlay", description="Burn a GPS overlay into a video.")
    sub = parser.add_subparsers(dest="command", required=True)

    render = sub.add_parser("render", help="Render the overlay for one video.")
    render.add_argument("--video", type=Path, required=True, help="Source video file.")
    render.add_argument("--kml", type=Path, required=True, help="KML track file.")
    render.add_argument("--output", type=Path, required=True, help="Output video file.")
    render.add_argument("--offset", type=float, default=0.0, help="Track time offset relative to the video (seconds).")
    render.add_argument("--unit", choices=["kmh", "ms"], default=None, help="Speed unit (default from settings).")
    render.add_argument("--fps", type=int, default=None, help="Output frame rate (default: keep source).")
    render.add_argument("--overlay-fps", type=int, default=None, help="Overlay sampling rate.")

    render.add_argument("--no-gauge", action="store_true", help="Disable the speed gauge.")
    render.add_argument("--gauge-size", choices=["small", "medium", "large"], default="medium")
    render.add_argument("--max-speed", type=float, default=None, help="Gauge full-scale speed in km/h.")

    render.add_argument("--speed", action="store_true", help="Info panel: show speed.")
    render.add_argument("--altitude", action="store_true", help="Info panel: show altitude.")
    render.add_argument("--coordinates", action="store_true", help="Info panel: show coordinates.")
    render.add_argument("--time", action="store_true", help="Info panel: show clock time.")

    render.add_argument("--map", action="store_true", help="Enable the mini-map.")
    render.add_argument("--verbose", action="store_true", help="Print encoder output.")
    return parser.parse_args(argv)


def build_job_spec(args: argparse.Namespace) -> JobSpec:
    return JobSpec(
        video_path=args.video,
        output_path=args.output,
        track_path=args.kml,
        offset_seconds=args.offset,
        speed_unit=args.unit,
        fps=args.fps,
        overlay_fps=args.overlay_fps,
        gauge=GaugeOptions(enabled=not args.no_gauge, size=args.gauge_size, max_speed_kmh=args.max_speed),
        info_panel=InfoPanelOptions(
            show_speed=args.speed,
            show_altitude=args.altitude,
            show_coordinates=args.coordinates,
            show_time=args.time,
        ),
        mini_map=MiniMapOptions(enabled=args.map),
    )


async def run_job(spec: JobSpec, verbose: bool = False) -> int:
    manager = JobManager(get_settings())
    handle = manager.start(spec)
    exit_code = 1
    try:
        async for event in handle.events():
            if isinstance(event, ProgressEvent):
                suffix = f" {event.message}" if event.message else ""
                print(f"[{event.percent:5.1f}%]{suffix}", flush=True)
            elif isinstance(event, LogEvent):
                if event.stream != "stderr" or verbose:
                    print(f"  {event.message}", flush=True)
            elif isinstance(event, ErrorEvent):
                print(f"Error ({event.code}): {event.message}", file=sys.stderr)
            elif isinstance(event, DoneEvent):
                if event.success:
                    print(f"Done: {handle.job.output_path}")
                    exit_code = 0
                else:
                    print("Cancelled", file=sys.stderr)
                    exit_code = 130
    finally:
        await manager.shutdown()
    return exit_code


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        spec = build_job_spec(args)
    except ValidationError as e:
        print(f"Invalid arguments: {e}", file=sys.stderr)
        return 2

    try:
        return asyncio.run(run_job(spec, verbose=args.verbose))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
