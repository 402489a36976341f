# === NAVMAP v1 ===
# {
#   "module": "SourceFetch.cli",
#   "purpose": "Typer CLI for fetching source artifacts through a port-forward tunnel",
#   "sections": [
#     {"id": "fetch", "name": "fetch", "anchor": "function-fetch", "kind": "function"},
#     {"id": "version-cmd", "name": "version_cmd", "anchor": "function-version-cmd", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Typer CLI for fetching source artifacts through a port-forward tunnel.

Exit codes:
    0: artifact extracted; the staging directory is printed on stdout
    1: tunnel, resolution, download, extraction or teardown failure
    2: invalid arguments or settings (nothing was started)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape

from . import __version__
from .errors import ConfigurationError, SourceFetchError
from .logging_config import setup_logging
from .pipeline import run_fetch
from .settings import LoggingSettings, SourceKind, build_request, get_default_config

_console = Console(soft_wrap=True)
_err_console = Console(stderr=True, soft_wrap=True)

_ALLOWED_TYPES = ", ".join(kind.value for kind in SourceKind)

app = typer.Typer(
    name="sourcefetch",
    help="Fetch Flux source artifacts through a kubectl port-forward tunnel",
    no_args_is_help=True,
    add_completion=False,
)


def _fail(message: str, code: int) -> typer.Exit:
    _err_console.print(f"[red]Error:[/red] {escape(message)}", highlight=False)
    return typer.Exit(code=code)


@app.command("fetch")
def fetch(
    name: str = typer.Option("", "--name", help="Source name"),
    namespace: str = typer.Option("flux-system", "--namespace", help="Source namespace"),
    revision: str = typer.Option("latest", "--revision", help="Source revision"),
    source_type: str = typer.Option(
        SourceKind.GIT_REPOSITORY.value,
        "--source-type",
        help=f"type of source to use: {_ALLOWED_TYPES}",
    ),
    local_port: int = typer.Option(8080, "--local-port", help="local port for port-forward"),
    service_name: str = typer.Option("source-controller", "--service-name", help="service name"),
    service_namespace: str = typer.Option(
        "flux-system", "--service-namespace", help="service namespace"
    ),
    service_port: int = typer.Option(80, "--service-port", help="service port for port-forward"),
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="DEBUG, INFO, WARNING, ERROR"
    ),
    log_file: Optional[Path] = typer.Option(None, "--log-file", help="JSON-lines log file"),
) -> None:
    """Download and untar a source artifact into a fresh staging directory."""
    try:
        kind = SourceKind.parse(source_type)
        if not name.strip() or not namespace.strip():
            raise ConfigurationError("--name and --namespace flags are mandatory")
        request = build_request(
            source_kind=kind,
            namespace=namespace,
            name=name,
            revision=revision,
            local_port=local_port,
            service_name=service_name,
            service_namespace=service_namespace,
            service_port=service_port,
        )
        settings = get_default_config()
        logging_settings = LoggingSettings(
            level=log_level or settings.logging.level,
            log_file=log_file or settings.logging.log_file,
        )
    except ConfigurationError as exc:
        raise _fail(str(exc), 2)
    except ValidationError as exc:
        raise _fail(f"Invalid logging options: {exc}", 2)

    logger = setup_logging(logging_settings)
    try:
        outcome = run_fetch(request, settings=settings, logger=logger)
    except ConfigurationError as exc:
        raise _fail(str(exc), 2)
    except SourceFetchError as exc:
        logger.error("%s", exc, extra={"stage": "pipeline"})
        raise _fail(str(exc), 1)

    logger.info(
        "Source %s/%s extracted in %s",
        request.namespace,
        request.name,
        outcome.staging_dir,
        extra={"stage": "pipeline", "files": len(outcome.files)},
    )
    _console.print(str(outcome.staging_dir), markup=False, highlight=False)


@app.command("version")
def version_cmd() -> None:
    """Show the sourcefetch version."""
    _console.print(f"sourcefetch {__version__}", highlight=False)


def main() -> None:
    """Console-script entry point."""
    logging.captureWarnings(True)
    app()


__all__ = ["app", "main"]
