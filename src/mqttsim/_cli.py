"""Command-line entrypoint for the simulator (Typer-based).

Provides :func:`build_cli`, which constructs a Typer app that parses
service-level options (``--version``, ``--log-level``, ``--log-format``,
``--env-file``, ``--namespace``, ``--database-url``, ``--no-discovery``)
and hands off to the simulator's async lifecycle, and :func:`main`, the
``mqttsim`` console script.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
from typing import TYPE_CHECKING, Annotated, get_args

import typer
from pydantic import ValidationError

from mqttsim._settings import LoggingSettings

if TYPE_CHECKING:
    from mqttsim._app import Simulator
    from mqttsim._settings import Settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_RUNTIME_ERROR = 3

# ---------------------------------------------------------------------------
# Option validation and overrides
# ---------------------------------------------------------------------------

_LOG_LEVELS: tuple[str, ...] = get_args(LoggingSettings.model_fields["level"].annotation)
_LOG_FORMATS: tuple[str, ...] = get_args(LoggingSettings.model_fields["format"].annotation)


def _choice(value: str | None, allowed: tuple[str, ...], option: str) -> str | None:
    """Match *value* case-insensitively against *allowed*.

    Raises:
        typer.BadParameter: If *value* is given and not allowed.
    """
    if value is None:
        return None
    for candidate in allowed:
        if candidate.lower() == value.lower():
            return candidate
    msg = f"Invalid value '{value}'. Choose from: {', '.join(allowed)}"
    raise typer.BadParameter(msg, param_hint=f"'{option}'")


def _apply_overrides(settings: Settings, overrides: dict[str, dict[str, object]]) -> None:
    """Merge per-section overrides into *settings*; empty sections are skipped."""
    for section, update in overrides.items():
        if update:
            current = getattr(settings, section)
            setattr(settings, section, current.model_copy(update=update))


def build_cli(sim: Simulator) -> typer.Typer:
    """Construct a Typer CLI around a :class:`Simulator`.

    The returned Typer app exposes a single default command.  When
    invoked it loads settings, applies CLI overrides and runs
    :meth:`Simulator._run_async` until SIGTERM/SIGINT.

    Args:
        sim: The simulator to wrap.

    Returns:
        A configured :class:`typer.Typer` ready to invoke.
    """
    name = sim.name
    version = sim.version

    cli = typer.Typer(help=f"{name} v{version}: {sim._description}")

    @cli.callback(invoke_without_command=True)
    def main(
        version_flag: Annotated[
            bool | None,
            typer.Option(
                "--version",
                is_eager=True,
                help="Show version and exit.",
            ),
        ] = None,
        log_level: Annotated[
            str | None,
            typer.Option("--log-level", help="Override log level."),
        ] = None,
        log_format: Annotated[
            str | None,
            typer.Option("--log-format", help="Override log format."),
        ] = None,
        env_file: Annotated[
            str,
            typer.Option("--env-file", help="Path to .env file."),
        ] = ".env",
        namespace: Annotated[
            str | None,
            typer.Option("--namespace", help="Override the MQTT topic namespace."),
        ] = None,
        database_url: Annotated[
            str | None,
            typer.Option(
                "--database-url",
                help="Override the store URL ('memory://' for in-memory).",
            ),
        ] = None,
        no_discovery: Annotated[
            bool,
            typer.Option("--no-discovery", help="Disable discovery payloads."),
        ] = False,
    ) -> None:
        # -- version ---------------------------------------------------------
        if version_flag:
            typer.echo(f"{name} v{version}")
            raise typer.Exit()

        level = _choice(log_level, _LOG_LEVELS, "--log-level")
        fmt = _choice(log_format, _LOG_FORMATS, "--log-format")

        try:
            settings: Settings = sim._settings_class(_env_file=env_file)  # type: ignore[call-arg]
        except ValidationError as exc:
            logger.error("Configuration error: %s", exc)
            raise SystemExit(EXIT_CONFIG_ERROR) from exc

        overrides: dict[str, dict[str, object]] = {"logging": {}, "mqtt": {}, "simulator": {}}
        if level is not None:
            overrides["logging"]["level"] = level
        if fmt is not None:
            overrides["logging"]["format"] = fmt
        if namespace is not None:
            overrides["mqtt"]["namespace"] = namespace
        if database_url is not None:
            overrides["simulator"]["database_url"] = database_url
        if no_discovery:
            overrides["simulator"]["discovery_enabled"] = False
        _apply_overrides(settings, overrides)

        # -- run the async lifecycle ----------------------------------------
        try:
            with contextlib.suppress(KeyboardInterrupt):
                asyncio.run(sim._run_async(settings=settings))
        except SystemExit:
            raise
        except Exception as exc:
            logger.error("Runtime error: %s", exc)
            sys.exit(EXIT_RUNTIME_ERROR)

    return cli


def main() -> None:
    """``mqttsim`` console script."""
    from mqttsim._app import Simulator  # noqa: PLC0415

    Simulator().cli()
