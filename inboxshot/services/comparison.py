from __future__ import annotations

import logging
import shutil
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from PIL import Image, ImageChops
from playwright.sync_api import sync_playwright

from inboxshot.constants import DEFAULT_COMPARE_WORKERS, DEFAULT_MAX_DIFF_RATIO
from inboxshot.schemas import (
    ComparisonReport,
    ComparisonResult,
    ComparisonStatus,
    PreviewDescriptor,
)
from inboxshot.services.artifacts import ArtifactStore
from inboxshot.services.sanitize import screenshot_name

LOGGER = logging.getLogger("inboxshot.comparison")

CaptureFn = Callable[[str, Path], None]
Size = Tuple[int, int]


@dataclass(frozen=True)
class PixelDiff:
    """Changed-pixel count measured on the canvas both screenshots fit on."""

    changed: int
    baseline_size: Size
    observed_size: Size

    @property
    def canvas(self) -> Size:
        return (
            max(self.baseline_size[0], self.observed_size[0]),
            max(self.baseline_size[1], self.observed_size[1]),
        )

    @property
    def size_changed(self) -> bool:
        return self.baseline_size != self.observed_size

    @property
    def percentage(self) -> float:
        width, height = self.canvas
        total = width * height
        return round(self.changed / total * 100.0, 4) if total else 0.0


def extend_canvas(img: Image.Image, size: Size) -> Image.Image:
    """Grow ``img`` to the right/bottom, filling with its bottom-right pixel."""
    if img.size == size:
        return img
    fill = img.getpixel((max(img.width - 1, 0), max(img.height - 1, 0)))
    canvas = Image.new(img.mode, size, fill)
    canvas.paste(img, (0, 0))
    return canvas


def describe_size(size: Size) -> str:
    return f"{size[0]}x{size[1]}"


class DiffEngine:
    """Count changed pixels and render the diff and heatmap review images."""

    DIFF_COLOR = (255, 193, 7)
    HEAT_COLOR = (255, 64, 0)

    def generate(
        self,
        baseline_path: Path,
        observed_path: Path,
        diff_path: Path,
        heatmap_path: Path,
    ) -> PixelDiff:
        with Image.open(baseline_path) as src:
            baseline = src.convert("RGBA")
        with Image.open(observed_path) as src:
            observed = src.convert("RGBA")

        baseline_size, observed_size = baseline.size, observed.size
        canvas = (max(baseline.width, observed.width), max(baseline.height, observed.height))
        baseline = extend_canvas(baseline, canvas)
        observed = extend_canvas(observed, canvas)

        # Alpha is ignored: "L" conversion only looks at the colour bands.
        mask = ImageChops.difference(baseline, observed).convert("L")
        unchanged = mask.histogram()[0]
        intensity = mask.point(lambda value: min(255, value * 4))
        self._tint(Image.new("RGBA", mask.size, (0, 0, 0, 255)), self.DIFF_COLOR, intensity).save(diff_path)
        self._tint(observed, self.HEAT_COLOR, intensity).save(heatmap_path)

        return PixelDiff(
            changed=mask.width * mask.height - unchanged,
            baseline_size=baseline_size,
            observed_size=observed_size,
        )

    @staticmethod
    def _tint(base: Image.Image, color: Tuple[int, int, int], intensity: Image.Image) -> Image.Image:
        overlay = Image.new("RGBA", base.size, color + (0,))
        overlay.putalpha(intensity)
        return Image.alpha_composite(base, overlay)


def playwright_capture(url: str, destination: Path, *, timeout_ms: int = 45000) -> None:
    """Open ``url`` in headless Chromium and store a full-page screenshot."""
    destination.parent.mkdir(parents=True, exist_ok=True)
    with sync_playwright() as playwright:
        browser = playwright.chromium.launch()
        try:
            page = browser.new_page()
            page.goto(url, wait_until="networkidle", timeout=timeout_ms)
            page.screenshot(path=str(destination), full_page=True, timeout=60000)
        finally:
            browser.close()


class ComparisonDriver:
    """Compare every materialized preview against its client's baseline image.

    The preview list must already be final: each client is captured and
    diffed independently on a thread pool. A missing baseline is recorded from
    the observed screenshot and reported as ``baseline_created``. A screenshot
    whose dimensions differ from its baseline fails whatever the pixel ratio.
    """

    def __init__(
        self,
        store: ArtifactStore,
        *,
        capture: Optional[CaptureFn] = None,
        diff_engine: Optional[DiffEngine] = None,
        max_diff_ratio: float = DEFAULT_MAX_DIFF_RATIO,
        max_workers: int = DEFAULT_COMPARE_WORKERS,
    ) -> None:
        self._store = store
        self._capture = capture or playwright_capture
        self._diffs = diff_engine or DiffEngine()
        self._max_diff_ratio = max_diff_ratio
        self._max_workers = max(1, max_workers)

    def run(self, task_key: str, previews: Sequence[PreviewDescriptor]) -> List[ComparisonResult]:
        if not previews:
            LOGGER.warning("No preview URLs found for %s; nothing to compare", task_key)
            results: List[ComparisonResult] = []
        else:
            LOGGER.info("Comparing %s preview(s) for %s", len(previews), task_key)
            with ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="inboxshot-compare") as pool:
                results = list(pool.map(lambda preview: self.compare(task_key, preview), previews))
        self._write_report(task_key, results)
        return results

    def compare(self, task_key: str, preview: PreviewDescriptor) -> ComparisonResult:
        image_name = screenshot_name(preview.client)
        baseline = self._store.baseline_dir(task_key) / image_name
        work_dir = self._store.results_dir(task_key) / Path(image_name).stem
        work_dir.mkdir(parents=True, exist_ok=True)
        observed = work_dir / "observed.png"
        result = ComparisonResult(
            client=preview.client,
            name=preview.name,
            url=preview.url,
            status=ComparisonStatus.error,
            baseline=self._store.relative(baseline),
        )

        try:
            self._capture(preview.url, observed)
        except Exception as exc:
            LOGGER.error("Capture failed for %s: %s", preview.client, exc)
            result.message = f"capture failed: {exc}"
            return result
        result.observed = self._store.relative(observed)

        if not baseline.exists():
            shutil.copy2(observed, baseline)
            LOGGER.warning("Baseline missing for %s; recorded %s", preview.client, baseline)
            result.status = ComparisonStatus.baseline_created
            result.message = "baseline did not exist and was written from this run"
            return result

        baseline_copy = work_dir / "baseline.png"
        diff_path = work_dir / "diff.png"
        heatmap_path = work_dir / "heatmap.png"
        try:
            shutil.copy2(baseline, baseline_copy)
            pixels = self._diffs.generate(baseline_copy, observed, diff_path, heatmap_path)
        except (OSError, ValueError) as exc:
            LOGGER.error("Diff failed for %s: %s", preview.client, exc)
            result.message = f"diff failed: {exc}"
            return result

        result.diff = self._store.relative(diff_path)
        result.heatmap = self._store.relative(heatmap_path)
        result.pixel_count = pixels.changed
        result.percentage = pixels.percentage
        if pixels.size_changed:
            result.status = ComparisonStatus.failed
            result.message = (
                f"size changed from {describe_size(pixels.baseline_size)} "
                f"to {describe_size(pixels.observed_size)}"
            )
            LOGGER.warning("%s: %s", preview.client, result.message)
        elif result.percentage <= self._max_diff_ratio * 100.0:
            result.status = ComparisonStatus.passed
            LOGGER.info("%s matches baseline (%.4f%% differs)", preview.client, result.percentage)
        else:
            result.status = ComparisonStatus.failed
            result.message = f"{result.percentage:.4f}% of pixels differ"
            LOGGER.warning("%s differs from baseline (%.4f%%)", preview.client, result.percentage)
        return result

    def _write_report(self, task_key: str, results: List[ComparisonResult]) -> Path:
        report = ComparisonReport(
            task=task_key,
            generated_at=datetime.now(tz=timezone.utc).isoformat(),
            max_diff_ratio=self._max_diff_ratio,
            results=results,
        )
        path = self._store.comparison_report_file(task_key)
        return self._store.write_json(path, report.model_dump(mode="json"))
