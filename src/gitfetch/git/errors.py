"""Error types raised while fetching a git source."""

from __future__ import annotations

from collections.abc import Mapping


class FetchError(Exception):
	"""
	Base class for every failure of a fetch invocation.

	Each subclass names the stage it belongs to and the process exit code the
	CLI uses for it, so a calling controller can tell a bad credential or a
	bad revision apart from an infrastructure problem worth retrying.

	"""

	stage: str = "fetch"
	exit_code: int = 1
	retryable: bool = False
	# One-line diagnosis shown to operators
	summary: str = "fetch failed"

	def __init__(self, message: str, *, context: Mapping[str, str] | None = None) -> None:
		"""
		Initialize the error.

		Args:
		    message: Human readable description of what failed
		    context: Extra key/value pairs (repository URL, revision, path...)

		"""
		super().__init__(message)
		self.message = message
		self.context = {k: v for k, v in (context or {}).items() if v}

	def __str__(self) -> str:
		"""Render the message followed by its context."""
		parts = [f"{self.stage}: {self.message}"]
		parts.extend(f"  {key}: {value}" for key, value in self.context.items())
		return "\n".join(parts)


class CredentialResolutionError(FetchError):
	"""The keychain configuration is malformed."""

	stage = "credential resolution"
	exit_code = 10
	summary = "keychain misconfigured"


class ProxyConfigurationError(FetchError):
	"""The outbound proxy address could not be parsed."""

	stage = "proxy configuration"
	exit_code = 11
	summary = "proxy misconfigured"


class AuthenticationError(FetchError):
	"""The remote rejected the credentials, or required some and none were given."""

	stage = "fetch"
	exit_code = 12
	summary = "bad credentials"


class TransportError(FetchError):
	"""Network, DNS or repository-not-found failure unrelated to authentication."""

	stage = "fetch"
	exit_code = 13
	retryable = True
	summary = "network or infrastructure problem"


class FetchCancelledError(TransportError):
	"""The fetch was cancelled by the caller or ran past its deadline."""


class RevisionResolutionError(FetchError):
	"""The requested revision does not exist in the fetched refs and objects."""

	stage = "revision resolution"
	exit_code = 14
	summary = "bad revision"


class CheckoutError(FetchError):
	"""The resolved commit's tree could not be written to the scratch clone."""

	stage = "checkout"
	exit_code = 15
	summary = "checkout failed"


class FilesystemError(FetchError):
	"""Directory creation, copy, or metadata write failure."""

	stage = "materialization"
	exit_code = 16
	retryable = True
	summary = "filesystem problem"

	def __init__(
		self,
		message: str,
		*,
		stage: str | None = None,
		context: Mapping[str, str] | None = None,
	) -> None:
		"""Initialize the error, optionally overriding the stage label."""
		super().__init__(message, context=context)
		if stage is not None:
			self.stage = stage


__all__ = [
	"AuthenticationError",
	"CheckoutError",
	"CredentialResolutionError",
	"FetchCancelledError",
	"FetchError",
	"FilesystemError",
	"ProxyConfigurationError",
	"RevisionResolutionError",
	"TransportError",
]
