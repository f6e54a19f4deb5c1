# src/cold_mirror/cli.py
"""Command-line interface for the cold-mirror tool."""

import asyncio
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional, Type

import click
from dotenv import load_dotenv
from rich.logging import RichHandler

from cold_mirror.codec import decompress_file
from cold_mirror.config import AppConfig, Config
from cold_mirror.exceptions import BatchCancelledError, CodecError, ColdMirrorError
from cold_mirror.notifier import format_summary_message, post_webhook
from cold_mirror.signals import GracefulShutdown

if TYPE_CHECKING:
    from cold_mirror.pipeline import MirrorPipeline
    from cold_mirror.summary import BatchSummary

logger: logging.Logger = logging.getLogger(__name__)


def setup_logging(level: str) -> None:
    """Configure rich-based logging for the application."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )
    # Silence noisy loggers
    for logger_name in ["botocore", "aiobotocore", "urllib3"]:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


async def main_async(
    pipeline_cls: "Type[MirrorPipeline]", config: Config
) -> "BatchSummary":
    """
    Asynchronously execute one backup or restore pass.

    Args:
        pipeline_cls (Type[MirrorPipeline]): The pipeline to run.
        config (Config): The application configuration.

    Returns:
        BatchSummary: The finalized statistics of the pass.
    """
    shutdown_manager: GracefulShutdown = GracefulShutdown()
    async with shutdown_manager as shutdown_event:
        pipeline: MirrorPipeline = pipeline_cls(config, shutdown_event)
        return await pipeline.run()


def _run_pass(
    pipeline_cls: "Type[MirrorPipeline]", options: Dict[str, Any]
) -> None:
    """Builds the configuration, runs one pass and sends the notification."""
    try:
        app_config: AppConfig = AppConfig(
            concurrency=options["concurrency"],
            full_backup=options["full_backup"],
        )
        config: Config = Config(app=app_config)

        summary: BatchSummary = asyncio.run(main_async(pipeline_cls, config))
        if config.webhook is not None:
            post_webhook(
                format_summary_message(summary, config.source.bucket), config.webhook
            )
        logger.info("✅ Run completed successfully.")
    except BatchCancelledError as e:
        logger.warning(f"Shutdown signal received, no summary produced: {e}")
        sys.exit(130)
    except ColdMirrorError as e:
        logger.critical(f"A critical application error occurred: {e}")
        sys.exit(1)
    except Exception:
        logger.critical(
            "An unexpected error caused the application to fail:", exc_info=True
        )
        sys.exit(1)


@click.group(
    invoke_without_command=True,
    context_settings=dict(help_option_names=["-h", "--help"]),
)
@click.option(
    "--concurrency",
    type=click.IntRange(min=1),
    default=5,
    envvar="COLDMIRROR_CONCURRENCY",
    help="Maximum number of concurrent object transfers.",
    show_default=True,
)
@click.option(
    "--full/--incremental",
    "full_backup",
    default=False,
    envvar="COLDMIRROR_FULL_BACKUP",
    help="Rewrite every object instead of skipping unchanged ones.",
    show_default=True,
)
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Set the logging level.",
    show_default=True,
)
@click.pass_context
def cli(ctx: click.Context, **kwargs: Any) -> None:
    """
    Mirror an S3-compatible bucket into a cold archive, Snappy-compressed.

    Without a subcommand, one backup pass is run. In incremental mode (the
    default), objects whose archived copy already holds the same compressed
    content are skipped.

    Credentials and bucket names must be set via environment variables.
    See the .env.example file for required variables.
    """
    setup_logging(kwargs["log_level"])
    ctx.obj = kwargs
    if ctx.invoked_subcommand is None:
        ctx.invoke(backup)


@cli.command()
@click.pass_obj
def backup(options: Dict[str, Any]) -> None:
    """Run one backup pass from the source bucket into the archive."""
    from cold_mirror.pipeline import BackupPipeline

    _run_pass(BackupPipeline, options)


@cli.command()
@click.pass_obj
def restore(options: Dict[str, Any]) -> None:
    """Restore every archived object back into the source bucket."""
    from cold_mirror.pipeline import RestorePipeline

    _run_pass(RestorePipeline, options)


@cli.command()
@click.argument(
    "path", type=click.Path(exists=True, dir_okay=False, path_type=Path)
)
@click.option(
    "-o",
    "--output",
    type=click.Path(dir_okay=False, writable=True, path_type=Path),
    default=None,
    help="Output file. Defaults to <name>_decompressed in the current directory.",
)
def decompress(path: Path, output: Optional[Path]) -> None:
    """Decompress one archived object that was downloaded to PATH."""
    try:
        decompress_file(path, output)
    except (CodecError, OSError) as e:
        logger.critical(f"Failed to decompress '{path}': {e}")
        sys.exit(1)


def main() -> None:
    """Console-script entry point. Loads .env before options read the environment."""
    load_dotenv()
    cli()


if __name__ == "__main__":
    main()
