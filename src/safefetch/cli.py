# src/safefetch/cli.py
"""safefetch Command Line Interface.

Entry point for the safefetch CLI tool.
"""

from __future__ import annotations

import json
from pathlib import Path

import typer
from pydantic import ValidationError

from safefetch import __version__
from safefetch.clients.http import fetch as guarded_fetch
from safefetch.core.config import SafeFetchSettings, load_settings
from safefetch.core.logging import configure_logging
from safefetch.core.security.errors import SafeFetchError
from safefetch.core.security.policy import PolicyConfig
from safefetch.core.security.web import validate_url

__all__ = ["app"]

app = typer.Typer(
    name="safefetch",
    help="safefetch: SSRF-guarded HTTP fetching.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"safefetch version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """safefetch: SSRF-guarded HTTP fetching."""


def _load(settings: str | None, verbose: bool) -> SafeFetchSettings:
    """Load settings (or defaults), configure logging, exit 1 on bad config."""
    if settings is None:
        loaded = SafeFetchSettings()
    else:
        settings_path = Path(settings).expanduser()
        try:
            loaded = load_settings(settings_path)
        except FileNotFoundError:
            typer.secho(f"Error: Settings file not found: {settings}", fg=typer.colors.RED, err=True)
            raise typer.Exit(1) from None
        except ValidationError as e:
            typer.secho("Configuration errors:", fg=typer.colors.RED, err=True)
            for error in e.errors():
                loc = ".".join(str(x) for x in error["loc"])
                typer.secho(f"  - {loc}: {error['msg']}", fg=typer.colors.RED, err=True)
            raise typer.Exit(1) from None

    level = "DEBUG" if verbose else loaded.logging.level
    configure_logging(json_output=loaded.logging.json_output, level=level)
    return loaded


@app.command()
def check(
    url: str = typer.Argument(..., help="URL to validate."),
    settings: str | None = typer.Option(
        None,
        "--settings",
        "-s",
        help="Path to settings YAML file.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Show debug logging.",
    ),
) -> None:
    """Validate a URL against the policy without fetching it.

    Prints the validated target as JSON, or the rejection and exits 1.
    """
    loaded = _load(settings, verbose)
    policy = PolicyConfig.from_settings(loaded.policy)
    try:
        target = validate_url(url, policy)
    except SafeFetchError as e:
        typer.secho(f"Rejected ({type(e).__name__}): {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from None

    typer.echo(
        json.dumps(
            {
                "url": target.url,
                "scheme": target.scheme,
                "host": target.host,
                "port": target.port,
                "pinned_ips": list(target.pinned_ips),
            },
            indent=2,
        )
    )


@app.command()
def fetch(
    url: str = typer.Argument(..., help="URL to fetch."),
    settings: str | None = typer.Option(
        None,
        "--settings",
        "-s",
        help="Path to settings YAML file.",
    ),
    output: str | None = typer.Option(
        None,
        "--output",
        "-o",
        help="Write the response body to this file instead of stdout.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Show debug logging.",
    ),
) -> None:
    """Fetch a URL, validating it and every redirect hop first."""
    loaded = _load(settings, verbose)
    policy = PolicyConfig.from_settings(loaded.policy)
    try:
        result = guarded_fetch(url, policy)
    except SafeFetchError as e:
        typer.secho(f"Fetch failed ({type(e).__name__}): {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from None

    if output is not None:
        Path(output).expanduser().write_bytes(result.content)
        typer.echo(f"{result.status_code} {result.url} -> {output}", err=True)
    else:
        typer.echo(result.text)
