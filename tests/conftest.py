"""Global test fixtures and configuration."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from gitfetch.git.transport import PROXY_ENV_VARS

if TYPE_CHECKING:
	from pathlib import Path


@pytest.fixture(autouse=True)
def isolate_environment(monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory) -> None:
	"""
	Keep the host environment out of the tests.

	Proxy variables are cleared and the config search locations point at empty
	directories, so a developer's own settings never change test outcomes.
	"""
	for name in (*PROXY_ENV_VARS, "GITFETCH_KEYCHAIN"):
		monkeypatch.delenv(name, raising=False)

	home: Path = tmp_path_factory.mktemp("xdg-config")
	monkeypatch.setattr("gitfetch.config.config_loader.xdg_config_home", str(home))
	monkeypatch.chdir(tmp_path_factory.mktemp("cwd"))
