"""Entry-point for the exam media service."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional

import typer
import uvicorn

from exam_media.bootstrap import initialize_app
from exam_media.config import CONFIG_ENV_VAR, AppConfig
from exam_media.logging_utils import build_handlers, configure_logging
from exam_media.services.audio_resolver import AudioResolver, ContentDescriptor, DescriptorError
from exam_media.services.fragments import FragmentAggregator
from exam_media.web import create_app


LOGGER = logging.getLogger("exam_media.cli")


cli = typer.Typer(add_completion=False, help="Exam media management commands")


DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000

config_option = typer.Option(
    None,
    "--config",
    "-c",
    envvar=CONFIG_ENV_VAR,
    help="Path to the JSON configuration file.",
)


def _prepare_logging(config: AppConfig) -> None:
    configure_logging(config.log_level, handlers=build_handlers(config.log_file))


def _load(config_path: Optional[Path]) -> AppConfig:
    config = initialize_app(config_path)
    _prepare_logging(config)
    return config


def _echo_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, ensure_ascii=False, indent=2))


def _normalize_root_path(root_path: Optional[str]) -> str:
    if root_path is None:
        return ""
    normalized = root_path.strip()
    if not normalized:
        return ""
    if not normalized.startswith("/"):
        normalized = f"/{normalized}"
    return normalized.rstrip("/")


@cli.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Launch the web server when no explicit command is provided."""

    if ctx.invoked_subcommand is None:
        ctx.invoke(serve, host=DEFAULT_HOST, port=DEFAULT_PORT, root_path=None, config_path=None)


@cli.command()
def serve(
    host: str = typer.Option(DEFAULT_HOST, help="Host interface for the web server"),
    port: int = typer.Option(DEFAULT_PORT, help="Port for the web server"),
    root_path: Optional[str] = typer.Option(
        None,
        help="Prefix the application expects when mounted behind a proxy",
        envvar="EXAM_MEDIA_ROOT_PATH",
    ),
    config_path: Optional[Path] = config_option,
) -> None:
    """Run the FastAPI web service."""

    app_config = _load(config_path)

    resolver = AudioResolver.from_config(app_config)
    aggregator = FragmentAggregator.from_config(app_config)
    normalized_root = _normalize_root_path(root_path)
    app = create_app(resolver, aggregator, root_path=normalized_root)

    server_config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_config=None,
        root_path=normalized_root,
    )
    server = uvicorn.Server(server_config)
    app.state.server = server
    LOGGER.info("Serving exam media on http://%s:%s%s/", host, port, normalized_root)
    server.run()


@cli.command()
def resolve(
    category: str = typer.Argument(..., help="Exam category, e.g. CET-4"),
    year: int = typer.Argument(..., help="Exam year"),
    month: int = typer.Argument(..., help="Exam month (1-12)"),
    sequence: int = typer.Option(1, "--sequence", "-n", help="Paper number within the sitting"),
    config_path: Optional[Path] = config_option,
) -> None:
    """Locate the audio file of one paper and print the match as JSON."""

    try:
        descriptor = ContentDescriptor(
            category=category, year=year, month=month, sequence_index=sequence
        )
    except DescriptorError as error:
        raise typer.BadParameter(str(error)) from error

    config = _load(config_path)
    result = AudioResolver.from_config(config).resolve(descriptor)
    _echo_json(result.to_dict())
    if not result.found:
        raise typer.Exit(code=1)


@cli.command()
def papers(config_path: Optional[Path] = config_option) -> None:
    """List the logical listening papers found in the dataset root."""

    config = _load(config_path)
    groups = FragmentAggregator.from_config(config).list_logical_papers()
    for group in groups:
        typer.echo(
            f"{group.logical_id}\t{group.year}\t{group.item_count} item(s)\t{group.file_count} file(s)"
        )
    typer.echo(f"{len(groups)} paper(s)")


@cli.command()
def paper(
    paper_id: str = typer.Argument(..., help="Logical paper id"),
    config_path: Optional[Path] = config_option,
) -> None:
    """Print one assembled listening paper as JSON."""

    config = _load(config_path)
    assembled = FragmentAggregator.from_config(config).get_paper(paper_id)
    if assembled is None:
        typer.echo(f"Paper '{paper_id}' not found.", err=True)
        raise typer.Exit(code=1)
    _echo_json(assembled.to_dict())


if __name__ == "__main__":
    cli()
