"""Implementation of the resolve command."""

from __future__ import annotations

from typing import Annotated

import typer

from gitfetch.cli.cli_types import ConfigOpt, KeychainOpt, TimeoutOpt
from gitfetch.cli.fetch_cmd import build_fetcher, exit_with_fetch_error
from gitfetch.git.errors import FetchError
from gitfetch.utils.cli_utils import handle_keyboard_interrupt, loading_spinner


def register_command(app: typer.Typer) -> None:
	"""Register the resolve command with the CLI app."""

	@app.command(name="resolve")
	def resolve_command(
		git_url: Annotated[str, typer.Argument(help="Repository URL")],
		git_revision: Annotated[str, typer.Argument(help="Branch, tag, or (abbreviated) commit id")],
		keychain: KeychainOpt = None,
		config: ConfigOpt = None,
		timeout: TimeoutOpt = None,
	) -> None:
		"""Print the full commit id a revision resolves to, without checking it out."""
		try:
			fetcher = build_fetcher(config, keychain, timeout)
			with loading_spinner(f"Resolving {git_url} @ {git_revision}..."):
				commit = fetcher.resolve(git_url, git_revision)
		except FetchError as e:
			exit_with_fetch_error(e)
		except KeyboardInterrupt:
			handle_keyboard_interrupt()

		typer.echo(commit)
