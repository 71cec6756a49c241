"""Pydantic schema for the gitfetch configuration file."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from gitfetch.git.fetcher import DEFAULT_SCRATCH_PREFIX
from gitfetch.git.metadata import METADATA_FILE_NAME
from gitfetch.git.transport import DEFAULT_PROXY_TIMEOUT, PROXY_ENV_VARS


class ProxySchema(BaseModel):
	"""Outbound proxy settings."""

	model_config = ConfigDict(extra="forbid")

	# Environment variables holding the proxy address, checked in order
	env_vars: list[str] = Field(default_factory=lambda: list(PROXY_ENV_VARS), min_length=1)
	timeout: float = Field(default=DEFAULT_PROXY_TIMEOUT, gt=0)


class AppConfigSchema(BaseModel):
	"""Root configuration."""

	model_config = ConfigDict(extra="forbid")

	keychain_file: Path | None = None
	metadata_file_name: str = Field(default=METADATA_FILE_NAME, min_length=1, pattern=r"^[^/\\]+$")
	scratch_prefix: str = Field(default=DEFAULT_SCRATCH_PREFIX, pattern=r"^[^/\\]*$")
	proxy: ProxySchema = Field(default_factory=ProxySchema)
