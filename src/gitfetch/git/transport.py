"""Network transport settings for fetching over HTTPS."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING
from urllib.parse import urlsplit, urlunsplit

from gitfetch.git.errors import ProxyConfigurationError

if TYPE_CHECKING:
	from collections.abc import Mapping, Sequence

	from pygit2 import Repository

logger = logging.getLogger(__name__)

PROXY_ENV_VARS = ("HTTPS_PROXY", "https_proxy")
DEFAULT_PROXY_TIMEOUT = 15.0

_PROXY_SCHEMES = frozenset({"http", "https"})


class RedirectPolicy(str, Enum):
	"""Values of libgit2's ``http.followRedirects`` setting."""

	NONE = "false"
	INITIAL = "initial"
	ALL = "true"


@dataclass(frozen=True)
class Transport:
	"""
	Per-invocation transport configuration.

	The value is handed to the fetch orchestrator explicitly; it is applied to
	the scratch clone's own config and fetch options and never installed in
	any process-wide registry.

	"""

	proxy_url: str | None = None
	timeout: float | None = None
	follow_redirects: RedirectPolicy = RedirectPolicy.INITIAL

	@property
	def uses_proxy(self) -> bool:
		"""Whether traffic is routed through an outbound proxy."""
		return self.proxy_url is not None

	def apply(self, repo: Repository) -> None:
		"""Write the redirect policy into the repository-local config."""
		repo.config["http.followRedirects"] = self.follow_redirects.value

	def describe(self) -> str:
		"""Summary safe for logs (proxy credentials are masked)."""
		if self.proxy_url is None:
			return "direct connection"
		return f"proxy {redact_url(self.proxy_url)} (timeout {self.timeout:g}s, redirects {self.follow_redirects.name})"


def redact_url(url: str) -> str:
	"""Replace any password in the URL's userinfo with ``***``."""
	parts = urlsplit(url)
	if parts.password is None:
		return url
	netloc = parts.netloc.rsplit("@", 1)[1]
	userinfo = f"{parts.username}:***" if parts.username else "***"
	return urlunsplit(parts._replace(netloc=f"{userinfo}@{netloc}"))


def parse_proxy_url(value: str) -> str:
	"""
	Validate an outbound proxy address.

	A value without a scheme is taken as an ``http://`` proxy, the way most
	HTTP clients read ``HTTPS_PROXY``.

	Args:
	    value: Raw environment value

	Returns:
	    str: The proxy URL, with a scheme

	Raises:
	    ProxyConfigurationError: If the value is not a usable proxy URL

	"""
	candidate = value.strip()
	if not candidate or any(ch.isspace() for ch in candidate):
		msg = f"parsing HTTPS_PROXY url: invalid address {value!r}"
		raise ProxyConfigurationError(msg)
	if "://" not in candidate:
		candidate = f"http://{candidate}"

	try:
		parts = urlsplit(candidate)
		# Accessing .port validates it
		_ = parts.port
		host = parts.hostname
	except ValueError as e:
		msg = f"parsing HTTPS_PROXY url: {e}"
		raise ProxyConfigurationError(msg, context={"proxy": redact_url(candidate)}) from e

	if parts.scheme.lower() not in _PROXY_SCHEMES:
		msg = f"parsing HTTPS_PROXY url: unsupported proxy scheme {parts.scheme!r}"
		raise ProxyConfigurationError(msg, context={"proxy": redact_url(candidate)})
	if not host:
		msg = "parsing HTTPS_PROXY url: missing host"
		raise ProxyConfigurationError(msg, context={"proxy": redact_url(candidate)})
	return candidate


def build_https_transport(
	env: Mapping[str, str] | None = None,
	*,
	timeout: float = DEFAULT_PROXY_TIMEOUT,
	env_vars: Sequence[str] = PROXY_ENV_VARS,
) -> Transport:
	"""
	Build the transport used to fetch a repository.

	The proxy variables are read once, here. When a proxy is configured the
	transport routes through it, carries ``timeout`` and does not follow
	redirects; otherwise the libgit2 defaults apply.

	Args:
	    env: Environment to read (defaults to ``os.environ``)
	    timeout: Deadline in seconds applied when a proxy is configured
	    env_vars: Variable names checked in order

	Returns:
	    Transport: The transport configuration

	Raises:
	    ProxyConfigurationError: If the proxy address is malformed

	"""
	environ = os.environ if env is None else env
	raw = next((environ[name] for name in env_vars if environ.get(name)), None)
	if raw is None:
		logger.debug("No outbound proxy configured")
		return Transport()

	transport = Transport(
		proxy_url=parse_proxy_url(raw),
		timeout=timeout,
		follow_redirects=RedirectPolicy.NONE,
	)
	logger.debug("Using %s", transport.describe())
	return transport
