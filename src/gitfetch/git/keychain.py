"""
Credential resolution for remote repositories.

A keychain maps repository URLs to authentication material. Entries are
loaded from a YAML file and matched against the host (and optionally a path
prefix) of the URL being fetched. URLs without a matching entry resolve to
anonymous access.

"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Literal
from urllib.parse import urlsplit

import yaml
from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError, model_validator

from gitfetch.git.errors import CredentialResolutionError

if TYPE_CHECKING:
	from collections.abc import Sequence

logger = logging.getLogger(__name__)

# Files found in a mounted build-secret directory
SECRET_USERNAME_FILE = "username"
SECRET_PASSWORD_FILE = "password"  # noqa: S105
SECRET_SSH_KEY_FILE = "ssh-privatekey"

DEFAULT_SSH_USERNAME = "git"

_SCP_LIKE_RE = re.compile(r"^(?:(?P<user>[^@/:]+)@)?(?P<host>[^@/:]+):(?P<path>.*)$")
_HTTP_SCHEMES = frozenset({"http", "https"})
_SSH_SCHEMES = frozenset({"ssh", "git+ssh", "ssh+git"})

RemoteFamily = Literal["http", "ssh", "other"]


@dataclass(frozen=True)
class Anonymous:
	"""No authentication."""


@dataclass(frozen=True)
class BasicAuth:
	"""Username and password (or token) for HTTP(S) remotes."""

	username: str
	password: SecretStr


@dataclass(frozen=True)
class SSHKey:
	"""SSH key pair on disk."""

	username: str
	private_key: Path
	public_key: Path | None = None
	passphrase: SecretStr | None = None


Credential = Anonymous | BasicAuth | SSHKey

ANONYMOUS = Anonymous()


@dataclass(frozen=True)
class RemoteLocation:
	"""The parts of a repository URL that credential matching cares about."""

	family: RemoteFamily
	host: str
	path: str
	username: str | None = None


def parse_remote_url(url: str) -> RemoteLocation:
	"""
	Split a repository URL into scheme family, host and path.

	Handles ``https://host/path``, ``ssh://user@host/path`` and the scp-like
	``user@host:path`` form. Local paths and other schemes yield family
	``"other"`` and never match a keychain entry.

	Args:
	    url: Repository URL as given by the caller

	Returns:
	    RemoteLocation: Normalized location (host lowercased, path without
	    surrounding slashes or a trailing ``.git``)

	"""
	if "://" in url:
		parts = urlsplit(url)
		scheme = parts.scheme.lower()
		if scheme in _HTTP_SCHEMES:
			family: RemoteFamily = "http"
		elif scheme in _SSH_SCHEMES:
			family = "ssh"
		else:
			family = "other"
		try:
			host = (parts.hostname or "").lower()
		except ValueError:
			host = ""
		return RemoteLocation(family=family, host=host, path=_normalize_path(parts.path), username=parts.username)

	match = _SCP_LIKE_RE.match(url)
	# A single letter before the colon is a Windows drive, not a host
	if match and len(match.group("host")) > 1:
		return RemoteLocation(
			family="ssh",
			host=match.group("host").lower(),
			path=_normalize_path(match.group("path")),
			username=match.group("user"),
		)
	return RemoteLocation(family="other", host="", path=_normalize_path(url))


def _normalize_path(path: str) -> str:
	path = path.strip("/")
	return path.removesuffix(".git")


def _path_has_prefix(path: str, prefix: str) -> bool:
	if not prefix:
		return True
	path_parts = path.split("/")
	prefix_parts = prefix.split("/")
	return path_parts[: len(prefix_parts)] == prefix_parts


class KeychainEntrySchema(BaseModel):
	"""One credential entry of the keychain file."""

	model_config = ConfigDict(extra="forbid")

	url: str = Field(min_length=1)
	type: Literal["basic", "ssh"]
	username: str | None = None
	password: SecretStr | None = None
	private_key_path: Path | None = None
	public_key_path: Path | None = None
	passphrase: SecretStr | None = None
	secret_dir: Path | None = None

	@model_validator(mode="after")
	def _check_material(self) -> KeychainEntrySchema:
		if self.secret_dir is not None:
			return self
		if self.type == "basic" and (self.username is None or self.password is None):
			msg = f"basic entry for '{self.url}' needs username and password, or secret_dir"
			raise ValueError(msg)
		if self.type == "ssh" and self.private_key_path is None:
			msg = f"ssh entry for '{self.url}' needs private_key_path, or secret_dir"
			raise ValueError(msg)
		return self


class KeychainFileSchema(BaseModel):
	"""Top level layout of a keychain file."""

	model_config = ConfigDict(extra="forbid")

	credentials: list[KeychainEntrySchema] = Field(default_factory=list)


class Keychain:
	"""Maps repository URLs to credentials."""

	def __init__(self, entries: Sequence[KeychainEntrySchema] = ()) -> None:
		"""
		Initialize the keychain.

		Args:
		    entries: Validated keychain entries, in file order

		"""
		self._entries = list(entries)

	@classmethod
	def from_file(cls, path: Path | None) -> Keychain:
		"""
		Load a keychain from a YAML file.

		Args:
		    path: Keychain file, or None for an empty keychain

		Returns:
		    Keychain: The loaded keychain

		Raises:
		    CredentialResolutionError: If the file is missing, is not valid YAML,
		        or does not match the keychain schema

		"""
		if path is None:
			return cls()
		path = path.expanduser()
		try:
			with path.open(encoding="utf-8") as f:
				raw = yaml.safe_load(f)
		except OSError as e:
			msg = f"unable to read keychain file: {e.strerror or e}"
			raise CredentialResolutionError(msg, context={"keychain": str(path)}) from e
		except yaml.YAMLError as e:
			msg = "keychain file is not valid YAML"
			raise CredentialResolutionError(msg, context={"keychain": str(path)}) from e

		try:
			schema = KeychainFileSchema.model_validate(raw or {})
		except ValidationError as e:
			# Validation messages quote offending input, which may be a secret
			fields = ", ".join(".".join(str(loc) for loc in err["loc"]) for err in e.errors())
			msg = f"keychain file does not match the expected layout (fields: {fields})"
			raise CredentialResolutionError(msg, context={"keychain": str(path)}) from None

		logger.debug("Loaded %d keychain entries from %s", len(schema.credentials), path)
		return cls(schema.credentials)

	def resolve(self, url: str) -> Credential:
		"""
		Resolve the credential to use for a repository URL.

		No network access is performed. Only entries whose type fits the URL
		scheme are considered (``basic`` for HTTP(S), ``ssh`` for SSH); among
		those with a matching host the one with the longest path prefix wins.

		Args:
		    url: Repository URL

		Returns:
		    Credential: The matching credential, or ``Anonymous``

		Raises:
		    CredentialResolutionError: If the matching entry points at secret
		        files that cannot be read

		"""
		location = parse_remote_url(url)
		entry = self._best_match(location)
		if entry is None:
			logger.debug("No credentials configured for host %r, using anonymous access", location.host)
			return ANONYMOUS

		logger.debug("Using %s credentials from keychain entry %r", entry.type, entry.url)
		if entry.type == "basic":
			return self._basic_credential(entry)
		return self._ssh_credential(entry, location)

	def _best_match(self, location: RemoteLocation) -> KeychainEntrySchema | None:
		if location.family == "other" or not location.host:
			return None
		wanted = "basic" if location.family == "http" else "ssh"
		best: KeychainEntrySchema | None = None
		best_len = -1
		for entry in self._entries:
			if entry.type != wanted:
				continue
			entry_location = _entry_location(entry.url)
			if entry_location.host != location.host:
				continue
			if not _path_has_prefix(location.path, entry_location.path):
				continue
			prefix_len = len(entry_location.path.split("/")) if entry_location.path else 0
			if prefix_len > best_len:
				best, best_len = entry, prefix_len
		return best

	@staticmethod
	def _basic_credential(entry: KeychainEntrySchema) -> BasicAuth:
		if entry.secret_dir is None:
			# Presence is guaranteed by the schema validator
			return BasicAuth(username=entry.username or "", password=entry.password or SecretStr(""))
		secret_dir = entry.secret_dir.expanduser()
		username = entry.username or _read_secret_file(secret_dir / SECRET_USERNAME_FILE, entry.url)
		password = _read_secret_file(secret_dir / SECRET_PASSWORD_FILE, entry.url)
		return BasicAuth(username=username, password=SecretStr(password))

	@staticmethod
	def _ssh_credential(entry: KeychainEntrySchema, location: RemoteLocation) -> SSHKey:
		if entry.private_key_path is not None:
			private_key = entry.private_key_path.expanduser()
		else:
			private_key = (entry.secret_dir or Path()).expanduser() / SECRET_SSH_KEY_FILE
		if not private_key.is_file():
			msg = "ssh private key file does not exist"
			raise CredentialResolutionError(msg, context={"entry": entry.url, "path": str(private_key)})
		public_key = entry.public_key_path.expanduser() if entry.public_key_path is not None else None
		entry_user = _entry_location(entry.url).username
		return SSHKey(
			username=entry.username or entry_user or location.username or DEFAULT_SSH_USERNAME,
			private_key=private_key,
			public_key=public_key,
			passphrase=entry.passphrase,
		)


def _entry_location(entry_url: str) -> RemoteLocation:
	"""Parse an entry URL; a bare host such as ``github.com`` or ``git@github.com`` is allowed."""
	location = parse_remote_url(entry_url)
	if location.family != "other" or "://" in entry_url:
		return location
	host, _, path = entry_url.strip("/").partition("/")
	username, _, host = host.rpartition("@")
	return RemoteLocation(family="other", host=host.lower(), path=_normalize_path(path), username=username or None)


def _read_secret_file(path: Path, entry_url: str) -> str:
	try:
		return path.read_text(encoding="utf-8").strip()
	except OSError as e:
		msg = f"unable to read secret file: {e.strerror or e}"
		raise CredentialResolutionError(msg, context={"entry": entry_url, "path": str(path)}) from e
