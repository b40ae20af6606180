"""Helpers shared by the tether subcommands."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click

from tether.config.models import TetherConfig
from tether.config.parser import ConfigError, load_config

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

config_option = click.option(
    "-c", "--config", "config_file", type=click.Path(), help="Config file path."
)
verbose_option = click.option(
    "-v", "--verbose", is_flag=True, help="Enable debug logging."
)


def load_or_exit(config_file: str | None) -> TetherConfig:
    """Load the config, exiting with status 1 on a config error."""
    try:
        return load_config(Path(config_file) if config_file else None)
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc


def configure_logging(config: TetherConfig, verbose: bool) -> None:
    """Route log records to stderr at the configured level."""
    level = logging.DEBUG if verbose else logging.getLevelName(config.log_level)
    logging.basicConfig(level=level, format=_LOG_FORMAT, stream=sys.stderr, force=True)
