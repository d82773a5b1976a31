"""Command-line entry point: ``inboxshot generate|compare|run|clients``."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from inboxshot.errors import ConfigurationError, PreviewGenerationError
from inboxshot.logging_utils import configure_logging
from inboxshot.schemas import ComparisonResult, PreviewDescriptor
from inboxshot.services.artifacts import ArtifactStore
from inboxshot.services.comparison import ComparisonDriver
from inboxshot.services.coordinator import PreviewCoordinator
from inboxshot.services.materializer import PreviewWriter
from inboxshot.services.providers import get_provider
from inboxshot.services.sanitize import sanitize
from inboxshot.settings import TaskSettings, load_settings, load_task_settings

LOGGER = logging.getLogger("inboxshot.cli")

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_COMPARISON_FAILED = 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="inboxshot", description="Email rendering previews and visual checks.")
    parser.add_argument("--root", type=Path, default=None, help="Project root (defaults to the working directory).")
    parser.add_argument("--debug", action="store_true", default=None, help="Verbose polling output.")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("generate", help="Submit the email and collect preview URLs.")
    sub.add_parser("compare", help="Compare the collected previews against baselines.")
    sub.add_parser("run", help="Generate previews, then compare them.")
    sub.add_parser("clients", help="List the clients supported by the configured service.")
    return parser


def _compare(settings: TaskSettings, previews: Optional[List[PreviewDescriptor]] = None) -> int:
    task_key = sanitize(settings.task_name)
    if not task_key:
        raise ConfigurationError(f"Task name {settings.task_name!r} has no usable characters for file naming.")
    store = ArtifactStore(root=settings.root)
    if previews is None:
        path = store.preview_file(task_key)
        if not path.is_file():
            LOGGER.error("Preview file missing: %s", path)
            return EXIT_FATAL
        try:
            previews = PreviewWriter(store).read(task_key)
        except (OSError, ValueError) as exc:
            LOGGER.error("Could not parse preview file %s: %s", path, exc)
            return EXIT_FATAL
        LOGGER.info("Loaded %s preview URL(s) for %r", len(previews), settings.task_name)

    driver = ComparisonDriver(
        store,
        max_diff_ratio=settings.max_diff_ratio,
        max_workers=settings.compare_workers,
    )
    results = driver.run(task_key, previews)
    _log_results(results)
    if any(not result.ok for result in results):
        return EXIT_COMPARISON_FAILED
    return EXIT_OK


def _log_results(results: Sequence[ComparisonResult]) -> None:
    for result in results:
        LOGGER.info("%s (%s): %s", result.name, result.client, result.status.value)
    passed = sum(1 for result in results if result.ok)
    LOGGER.info("%s/%s comparison(s) passed", passed, len(results))


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    configure_logging(logging.DEBUG if args.debug else logging.INFO)
    overrides = {"debug": args.debug}

    try:
        if args.command == "compare":
            return _compare(load_task_settings(root=args.root, **overrides))

        settings = load_settings(root=args.root, **overrides)
        if settings.debug:
            logging.getLogger("inboxshot").setLevel(logging.DEBUG)

        if args.command == "clients":
            provider = get_provider(settings.service, settings.api_key, settings.password)
            for client_id in provider.list_clients():
                print(client_id)
            return EXIT_OK

        result = PreviewCoordinator(settings).run()
        if args.command == "generate":
            return EXIT_OK
        # The preview file is fully written at this point.
        return _compare(settings, result.previews)
    except (ConfigurationError, PreviewGenerationError) as exc:
        LOGGER.error("%s", exc)
        return EXIT_FATAL
    except KeyboardInterrupt:  # pragma: no cover - manual interruption
        LOGGER.warning("Interrupted by user.")
        return EXIT_FATAL


if __name__ == "__main__":
    sys.exit(main())
