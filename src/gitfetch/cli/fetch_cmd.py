"""Implementation of the fetch command."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated

import typer

from gitfetch.cli.cli_types import ConfigOpt, KeychainOpt, TimeoutOpt
from gitfetch.config import ConfigError, ConfigLoader
from gitfetch.git.errors import FetchError
from gitfetch.git.fetcher import Fetcher, FetchRequest
from gitfetch.git.keychain import Keychain
from gitfetch.utils.cli_utils import (
	CONFIG_ERROR_EXIT_CODE,
	exit_with_error,
	handle_keyboard_interrupt,
	loading_spinner,
)
from gitfetch.utils.log_setup import console

logger = logging.getLogger(__name__)

DirOpt = Annotated[
	Path,
	typer.Option(
		"--dir",
		"-d",
		envvar="GITFETCH_DIR",
		help="Directory the fetched tree is materialized into",
	),
]

GitUrlOpt = Annotated[
	str,
	typer.Option(
		"--git-url",
		envvar="GITFETCH_GIT_URL",
		help="Repository URL",
	),
]

GitRevisionOpt = Annotated[
	str,
	typer.Option(
		"--git-revision",
		envvar="GITFETCH_GIT_REVISION",
		help="Branch, tag, or (abbreviated) commit id",
	),
]

MetadataDirOpt = Annotated[
	Path,
	typer.Option(
		"--metadata-dir",
		"-m",
		envvar="GITFETCH_METADATA_DIR",
		help="Existing directory that receives project-metadata.toml",
	),
]


def build_fetcher(config: Path | None, keychain: Path | None, timeout: float | None) -> Fetcher:
	"""
	Create a Fetcher from the config file and command line overrides.

	Exits with ``CONFIG_ERROR_EXIT_CODE`` when the config file is invalid.
	Keychain problems surface as ``CredentialResolutionError``.

	"""
	try:
		app_config = ConfigLoader(config).get
	except ConfigError as e:
		exit_with_error(f"Configuration error: {e!s}", exit_code=CONFIG_ERROR_EXIT_CODE, exception=e)

	return Fetcher(
		Keychain.from_file(keychain or app_config.keychain_file),
		proxy_env_vars=app_config.proxy.env_vars,
		proxy_timeout=timeout or app_config.proxy.timeout,
		metadata_file_name=app_config.metadata_file_name,
		scratch_prefix=app_config.scratch_prefix,
	)


def exit_with_fetch_error(error: FetchError) -> None:
	"""Report a failed stage and exit with the code of its error kind."""
	exit_with_error(
		f"{error.stage.capitalize()} failed ({error.summary}).",
		exit_code=error.exit_code,
		exception=error,
	)


def register_command(app: typer.Typer) -> None:
	"""Register the fetch command with the CLI app."""

	@app.command(name="fetch")
	def fetch_command(
		dir: DirOpt,  # noqa: A002
		git_url: GitUrlOpt,
		git_revision: GitRevisionOpt,
		metadata_dir: MetadataDirOpt,
		keychain: KeychainOpt = None,
		config: ConfigOpt = None,
		timeout: TimeoutOpt = None,
	) -> None:
		"""
		Fetch a git revision into a directory and write its metadata.

		The directory is replaced by the tree at the resolved commit, without
		the .git directory. project-metadata.toml in the metadata directory
		records the repository, the requested revision and the commit.

		"""
		_fetch_command_impl(
			destination_dir=dir,
			git_url=git_url,
			git_revision=git_revision,
			metadata_dir=metadata_dir,
			keychain=keychain,
			config=config,
			timeout=timeout,
		)


def _fetch_command_impl(
	destination_dir: Path,
	git_url: str,
	git_revision: str,
	metadata_dir: Path,
	keychain: Path | None,
	config: Path | None,
	timeout: float | None,
) -> None:
	request = FetchRequest(
		destination_dir=destination_dir,
		repository_url=git_url,
		revision=git_revision,
		metadata_dir=metadata_dir,
	)
	try:
		fetcher = build_fetcher(config, keychain, timeout)
		with loading_spinner(f"Fetching {git_url} @ {git_revision}..."):
			result = fetcher.fetch(request)
	except FetchError as e:
		exit_with_fetch_error(e)
	except KeyboardInterrupt:
		handle_keyboard_interrupt()

	console.print(f"[green]Fetched[/green] {result.repository_url} @ {result.revision} -> {result.commit}")
