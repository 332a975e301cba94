"""CLI entrypoint and logging/argument utilities for website generation.

This module is a thin orchestration layer: it parses arguments, configures
logging, loads :class:`~sitegen.backends.config.GeneratorConfig`, opens an
application context and runs one
:meth:`~sitegen.pipeline.orchestrator.PipelineOrchestrator.generate_website`
call with ``asyncio.run``. All business logic lives in the pipeline
modules.

Errors from the project taxonomy (:mod:`sitegen.exceptions`) are logged and
mapped to exit code ``1``; an interactive interrupt exits with ``130``.

Examples
--------
>>> # In shell
>>> # sitegen --name "Green Basket" --type grocery --location Pune --offline --output site.html
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from pathlib import Path
from typing import Sequence

from sitegen.backends.config import GeneratorConfig
from sitegen.config import (
    DEFAULT_STORE_ID,
    DEFAULT_TENANT_ID,
    LOG_DIR,
    LOG_FILENAME,
    LOG_FORMAT,
)
from sitegen.context import build_orchestrator, open_context
from sitegen.exceptions import AppError
from sitegen.models import GeneratedAsset, GenerationRequest
from sitegen.pipeline.renderer import write_html_output

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO", enable_file: bool = True) -> None:
    r"""Configure console and optional file logging for the CLI.

    Parameters
    ----------
    level : str, optional
        Logging level name, e.g. ``"DEBUG"`` or ``"WARNING"``.
    enable_file : bool, optional
        Whether to also append to ``logs/sitegen.log``.

    Notes
    -----
    All existing root handlers are replaced. Failure to create the file
    handler (read-only checkout, missing permissions) leaves console
    logging in place.
    """
    for h in logging.root.handlers[:]:
        logging.root.removeHandler(h)
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if enable_file:
        try:
            LOG_DIR.mkdir(exist_ok=True)
            handlers.insert(0, logging.FileHandler(LOG_DIR / LOG_FILENAME, mode="a"))
        except OSError:
            logger.debug("File logging unavailable in %s", LOG_DIR)
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
    )


def parse_arguments(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for one website generation."""
    parser = argparse.ArgumentParser(
        description="Generate and publish a website for a small business."
    )
    parser.add_argument("-n", "--name", required=True, help="Business name")
    parser.add_argument("-t", "--type", default="general", help="Business type")
    parser.add_argument("--location", default="", help="City or area")
    parser.add_argument("-d", "--description", default="", help="Free-text description")
    parser.add_argument("--language", default="en")
    parser.add_argument("--theme", default=None, help="Preferred theme colour")
    parser.add_argument("--tenant", default=DEFAULT_TENANT_ID)
    parser.add_argument("--store", default=DEFAULT_STORE_ID)
    parser.add_argument(
        "--offline",
        action="store_true",
        default=None,
        help="Use the rule-based templates only (no model calls)",
    )
    parser.add_argument(
        "--preview",
        action="store_true",
        help="Skip publishing and return a data: URL of the page",
    )
    parser.add_argument("-o", "--output", type=Path, default=None, help="Write the HTML here")
    parser.add_argument(
        "--log-level", type=str, default=os.environ.get("LOG_LEVEL", "INFO")
    )
    return parser.parse_args(argv)


def log_run_summary(asset: GeneratedAsset) -> None:
    """Log one line per stage plus the overall outcome of a run."""
    meta = asset.metadata
    for name, report in meta.get("stages", {}).items():
        logger.info(
            "Stage %-8s level=%s backend=%s time=%sms",
            name,
            report.get("levelUsed"),
            report.get("backendUsed"),
            report.get("generationTimeMs"),
        )
    logger.info(
        "Run summary: mode=%s sections=%s images=%s html_size=%s cost=%s time=%sms",
        meta.get("mode"),
        meta.get("sections_generated"),
        meta.get("images_generated"),
        meta.get("html_size"),
        meta.get("total_cost"),
        meta.get("generation_time_ms"),
    )
    if meta.get("degraded_reason"):
        logger.warning("Run degraded: %s", meta["degraded_reason"])


async def run(args: argparse.Namespace) -> GeneratedAsset:
    """Generate one website as described by ``args``."""
    config = GeneratorConfig(offline=args.offline)
    request = GenerationRequest(
        business_name=args.name,
        business_type=args.type,
        location=args.location,
        description=args.description,
        language=args.language,
        theme_preference=args.theme,
    )
    async with open_context(config) as ctx:
        orchestrator = build_orchestrator(ctx, publish=not args.preview)
        return await orchestrator.generate_website(request, args.tenant, args.store)


def main(argv: Sequence[str] | None = None) -> int:
    """Run the CLI and return the process exit code."""
    args = parse_arguments(argv)
    configure_logging(args.log_level, enable_file=not os.environ.get("DISABLE_FILE_LOGS"))
    logger.info("Starting website generation for %r", args.name)
    try:
        asset = asyncio.run(run(args))
    except AppError as exc:
        logger.error("Website generation failed: %s", exc, extra={"error": exc.to_dict()})
        return 1
    except ValueError as exc:
        logger.error("Invalid request: %s", exc)
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return 130
    if args.output is not None:
        write_html_output(asset.html, args.output)
        logger.info("HTML written to %s", args.output)
    log_run_summary(asset)
    print(asset.website_url)
    return 0


__all__ = ["configure_logging", "main", "parse_arguments", "run"]


if __name__ == "__main__":
    raise SystemExit(main())
