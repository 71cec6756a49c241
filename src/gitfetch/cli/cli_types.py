"""Shared option types for gitfetch commands."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

KeychainOpt = Annotated[
	Path | None,
	typer.Option(
		"--keychain",
		"-k",
		envvar="GITFETCH_KEYCHAIN",
		help="YAML keychain file mapping repository URLs to credentials (overrides config)",
	),
]

ConfigOpt = Annotated[
	Path | None,
	typer.Option(
		"--config",
		"-c",
		help="Path to config file",
	),
]

TimeoutOpt = Annotated[
	float | None,
	typer.Option(
		"--timeout",
		min=0.1,
		help="Timeout in seconds for fetches through a proxy (overrides config)",
	),
]
