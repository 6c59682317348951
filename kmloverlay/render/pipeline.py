"""
Overlay job pipeline.

This module orchestrates one overlay job end to end:
1. Validate inputs and load the track (5%)
2. Probe the source video (10%)
3. Render every enabled overlay layer concurrently (10% -> 20%)
4. Build the overlay filter graph
5. Encode the final video with the source audio (20% -> 95%)
6. Report completion (100%)

Overlay clips live in a job-scoped work directory that is removed on every
exit path. A partially written output file is removed when the job fails or
is cancelled.
"""

import asyncio
import logging
import os
import shutil
import tempfile
from collections import deque
from typing import Callable, Optional

from kmloverlay.config import Settings, get_settings
from kmloverlay.exceptions import (
    EncodeFailedError,
    InvalidJobSpecError,
    NoTrackDataError,
    OverlayError,
    ProbeFailedError,
    RenderFailedError,
)
from kmloverlay.models.track import Track
from kmloverlay.render.compositor import (
    CompositionPlan,
    LayerKind,
    OverlayClip,
    build_composition,
    build_encode_command,
    map_encode_progress,
    parse_progress_line,
)
from kmloverlay.render.info_panel import InfoFields
from kmloverlay.render.overlay_renderer import LayerRenderOptions, render_overlay_clip
from kmloverlay.schemas.events import Event, LogEvent, ProgressEvent
from kmloverlay.schemas.options import JobSpec
from kmloverlay.services.kml_parser import load_kml, parse_kml, track_from_summary
from kmloverlay.utils.media_info import probe_media_info

logger = logging.getLogger(__name__)

EmitFn = Callable[[Event], None]
CancelCheck = Callable[[], bool]

STDERR_TAIL_LINES = 20

# Progress checkpoints (overall job percent)
PROGRESS_VALIDATED = 5.0
PROGRESS_PROBED = 10.0
PROGRESS_RENDERED = 20.0


class ProgressTracker:
    """Emits ProgressEvents that never go backwards.

    Updates below the last reported percent are raised to it, and updates that
    would not move the value by at least `min_step` are dropped unless they
    carry a message.
    """

    def __init__(self, emit: EmitFn, min_step: float = 1.0):
        self._emit = emit
        self._min_step = min_step
        self.percent = 0.0

    def update(self, percent: float, message: Optional[str] = None) -> None:
        percent = min(100.0, max(percent, self.percent))
        if message is None and percent - self.percent < self._min_step:
            return
        self.percent = percent
        self._emit(ProgressEvent(percent=round(percent, 2), message=message))


class OverlayPipeline:
    """Runs one job: parse, probe, render layers, compose, encode."""

    def __init__(
        self,
        job_id: str,
        spec: JobSpec,
        emit: EmitFn,
        cancel_check: Optional[CancelCheck] = None,
        settings: Optional[Settings] = None,
    ):
        self.job_id = job_id
        self.spec = spec
        self.settings = settings or get_settings()
        self._emit = emit
        self._cancel_check = cancel_check
        self.progress = ProgressTracker(emit)
        self.work_dir: Optional[str] = None
        self.skipped_layers: list[LayerKind] = []

    def _log(self, message: str, stream: str = "system") -> None:
        logger.info(f"[JOB {self.job_id}] {message}")
        self._emit(LogEvent(stream=stream, message=message))

    def _is_cancelled(self) -> bool:
        return self._cancel_check is not None and self._cancel_check()

    def _raise_if_cancelled(self) -> None:
        if self._is_cancelled():
            raise asyncio.CancelledError("Render cancelled")

    async def run(self) -> str:
        """
        Execute the whole job.

        Returns:
            Path to the output video

        Raises:
            OverlayError: On any validation, probe, render or encode failure
            asyncio.CancelledError: If the job was cancelled
        """
        output_path = str(self.spec.output_path)
        encode_started = False
        success = False

        try:
            # Step 1: validate inputs and load the track
            track = await self._load_track()
            self._raise_if_cancelled()
            self.progress.update(PROGRESS_VALIDATED, f"Track loaded ({len(track)} points)")

            # Step 2: probe source video
            duration_s = await self._probe()
            self._raise_if_cancelled()
            self.progress.update(PROGRESS_PROBED, f"Video duration {duration_s:.1f}s")

            # Step 3: render overlay layers
            self.work_dir = tempfile.mkdtemp(
                prefix=f"kmloverlay_{self.job_id}_", dir=self.settings.temp_dir
            )
            clips = await self._render_layers(track, duration_s)
            self._raise_if_cancelled()
            self.progress.update(PROGRESS_RENDERED, f"Rendered {len(clips)} overlay layer(s)")

            # Step 4: compose
            plan = build_composition(
                str(self.spec.video_path), clips, margin=self.settings.overlay_margin_px
            )
            if plan.filter_complex:
                logger.info(f"[ENCODE] filter_complex: {plan.filter_complex}")

            # Step 5: encode
            encode_started = True
            await self._encode(plan, output_path, duration_s)

            # Step 6: done
            success = True
            self.progress.update(100.0, "Completed")
            logger.info(f"[JOB {self.job_id}] Output written to {output_path}")
            return output_path
        finally:
            if self.work_dir:
                shutil.rmtree(self.work_dir, ignore_errors=True)
            if encode_started and not success:
                self._remove_partial_output(output_path)

    def _remove_partial_output(self, output_path: str) -> None:
        try:
            os.remove(output_path)
            logger.info(f"[JOB {self.job_id}] Removed partial output {output_path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"[JOB {self.job_id}] Could not remove partial output {output_path}: {e}")

    async def _load_track(self) -> Track:
        spec = self.spec
        if not spec.video_path.is_file():
            raise InvalidJobSpecError("file does not exist", field="video_path")
        output_dir = spec.output_path.parent
        if not output_dir.is_dir():
            raise InvalidJobSpecError(f"directory {output_dir} does not exist", field="output_path")

        if spec.track_summary is not None:
            return await asyncio.to_thread(track_from_summary, spec.track_summary)
        if spec.track_data is not None:
            return await asyncio.to_thread(parse_kml, spec.track_data)
        if not spec.track_path.is_file():
            raise InvalidJobSpecError("file does not exist", field="track_path")
        return await asyncio.to_thread(load_kml, spec.track_path)

    async def _probe(self) -> float:
        info = await probe_media_info(str(self.spec.video_path), self.settings)
        if not info.duration_ms or info.duration_ms <= 0:
            raise ProbeFailedError(f"Video has no duration: {self.spec.video_path}")
        logger.info(
            f"[JOB {self.job_id}] Source {info.width}x{info.height} "
            f"{info.duration_ms}ms audio={info.has_audio}"
        )
        return info.duration_ms / 1000

    def _layer_options(self) -> LayerRenderOptions:
        spec = self.spec
        info = spec.info_panel
        return LayerRenderOptions(
            speed_unit=spec.speed_unit or self.settings.default_speed_unit,
            gauge_size=spec.gauge.size,
            gauge_max_speed_kmh=spec.gauge.max_speed_kmh or self.settings.gauge_max_speed_kmh,
            info_fields=InfoFields(
                show_speed=info.show_speed,
                show_altitude=info.show_altitude,
                show_coordinates=info.show_coordinates,
                show_time=info.show_time,
            ),
            map_width=spec.mini_map.width,
            map_height=spec.mini_map.height,
            timezone_name=self.settings.display_timezone,
            font_path=self.settings.font_path,
        )

    async def _render_layers(self, track: Track, duration_s: float) -> list[OverlayClip]:
        layers = self.spec.enabled_layers()
        if not layers:
            self._log("No overlay layers enabled")
            return []

        options = self._layer_options()
        overlay_fps = self.spec.overlay_fps or self.settings.overlay_fps
        fractions = {kind: 0.0 for kind in layers}
        span = PROGRESS_RENDERED - PROGRESS_PROBED

        def on_frame(kind: LayerKind, done: int, total: int) -> None:
            fractions[kind] = done / total if total else 1.0
            self.progress.update(PROGRESS_PROBED + span * sum(fractions.values()) / len(layers))

        results = await asyncio.gather(
            *(
                render_overlay_clip(
                    track,
                    kind,
                    self.work_dir,
                    duration_s,
                    self.spec.offset_seconds,
                    overlay_fps,
                    options,
                    settings=self.settings,
                    cancel_check=self._cancel_check,
                    on_frame=lambda done, total, kind=kind: on_frame(kind, done, total),
                )
                for kind in layers
            ),
            return_exceptions=True,
        )

        clips: list[OverlayClip] = []
        failures: list[BaseException] = []
        for kind, result in zip(layers, results):
            if isinstance(result, OverlayClip):
                clips.append(result)
            elif isinstance(result, NoTrackDataError):
                self.skipped_layers.append(kind)
                self._log(f"Skipping {kind.label} layer: {result.message}")
            elif isinstance(result, asyncio.CancelledError):
                raise result
            else:
                logger.error(f"[RENDER] {kind.label} layer failed: {result!r}")
                failures.append(result)

        if failures:
            first = failures[0]
            if isinstance(first, OverlayError):
                raise first
            raise RenderFailedError(f"Overlay rendering failed: {first}") from first
        return clips

    async def _encode(self, plan: CompositionPlan, output_path: str, duration_s: float) -> None:
        cmd = build_encode_command(plan, output_path, self.spec.fps, self.settings)
        logger.info(f"[ENCODE] Command: {' '.join(cmd)}")

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise EncodeFailedError(f"Could not start FFmpeg: {e}") from e

        stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)

        async def read_progress() -> None:
            async for raw_line in proc.stdout:
                line = raw_line.decode("utf-8", errors="replace").strip()
                pct = parse_progress_line(line, duration_s)
                if pct is not None:
                    self.progress.update(map_encode_progress(pct))

        async def read_stderr() -> None:
            async for raw_line in proc.stderr:
                line = raw_line.decode("utf-8", errors="replace").rstrip()
                if line:
                    stderr_tail.append(line)
                    self._emit(LogEvent(stream="stderr", message=line))

        try:
            # Both pipes are drained together so neither can fill up and stall FFmpeg
            await asyncio.gather(read_progress(), read_stderr())
            await proc.wait()
        except BaseException:
            if proc.returncode is None:
                logger.info(f"[ENCODE] Killing FFmpeg (pid={proc.pid})")
                proc.kill()
                await proc.wait()
            raise

        if proc.returncode != 0:
            tail = "\n".join(list(stderr_tail)[-5:])
            logger.error(f"[ENCODE] FFmpeg exited with {proc.returncode}: {tail}")
            raise EncodeFailedError(exit_code=proc.returncode, stderr_tail=tail)
