"""
Fetch a revision of a remote repository into a local workspace.

The pipeline is: resolve credentials, build the transport, fetch every ref
into a throwaway scratch clone, resolve the revision, check it out, copy the
working tree into the destination, and write the metadata descriptor.

"""

from __future__ import annotations

import contextlib
import logging
import re
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import pygit2
from pygit2.enums import CheckoutStrategy, CredentialType

from gitfetch.git.errors import (
	AuthenticationError,
	CheckoutError,
	FetchCancelledError,
	FetchError,
	FilesystemError,
	RevisionResolutionError,
	TransportError,
)
from gitfetch.git.keychain import Anonymous, BasicAuth, Credential, Keychain, SSHKey
from gitfetch.git.metadata import METADATA_FILE_NAME, stage_metadata
from gitfetch.git.transport import DEFAULT_PROXY_TIMEOUT, PROXY_ENV_VARS, Transport, build_https_transport
from gitfetch.workspace.materializer import materialize

if TYPE_CHECKING:
	import threading
	from collections.abc import Iterator, Mapping, Sequence

logger = logging.getLogger(__name__)

REMOTE_NAME = "origin"
FETCH_REFSPEC = "+refs/*:refs/*"
DEFAULT_SCRATCH_PREFIX = "git-clone-"

_AUTH_FAILURE_RE = re.compile(
	r"authenticat|credentials|\b401\b|\b403\b|permission denied \(publickey",
	re.IGNORECASE,
)


@dataclass(frozen=True)
class FetchRequest:
	"""Input of one fetch invocation."""

	destination_dir: Path
	repository_url: str
	revision: str
	metadata_dir: Path


@dataclass(frozen=True)
class FetchResult:
	"""Outcome of a successful fetch."""

	destination_dir: Path
	repository_url: str
	revision: str
	commit: str
	metadata_path: Path


@dataclass(frozen=True)
class ScratchClone:
	"""A temporary repository holding every fetched ref."""

	path: Path
	repository: pygit2.Repository


class FetchCallbacks(pygit2.RemoteCallbacks):
	"""
	Remote callbacks that supply credentials and enforce cancellation.

	libgit2 calls ``credentials`` again when the server rejects what it was
	given; the second call is treated as a rejection instead of replaying the
	same credential until libgit2 gives up.

	"""

	def __init__(
		self,
		credential: Credential,
		*,
		repository_url: str,
		cancel: threading.Event | None = None,
		deadline: float | None = None,
	) -> None:
		"""
		Initialize the callbacks.

		Args:
		    credential: Credential resolved for the repository
		    repository_url: URL being fetched, used for error context
		    cancel: Event that aborts the transfer once set
		    deadline: ``time.monotonic()`` value after which the transfer aborts

		"""
		super().__init__()
		self._credential = credential
		self._repository_url = repository_url
		self._cancel = cancel
		self._deadline = deadline
		self.credential_requests = 0

	def credentials(
		self,
		url: str,
		username_from_url: str | None,
		allowed_types: CredentialType,
	) -> pygit2.UserPass | pygit2.Keypair:
		"""Return the configured credential, or fail if it was already rejected."""
		self.check_aborted()
		self.credential_requests += 1
		context = {"repository": self._repository_url}

		if isinstance(self._credential, Anonymous):
			msg = "authentication required but no credentials are configured for repository"
			raise AuthenticationError(msg, context=context)
		if self.credential_requests > 1:
			msg = "invalid credentials for repository"
			raise AuthenticationError(msg, context=context)

		if isinstance(self._credential, BasicAuth) and allowed_types & CredentialType.USERPASS_PLAINTEXT:
			return pygit2.UserPass(self._credential.username, self._credential.password.get_secret_value())
		if isinstance(self._credential, SSHKey) and allowed_types & CredentialType.SSH_KEY:
			passphrase = self._credential.passphrase.get_secret_value() if self._credential.passphrase else ""
			return pygit2.Keypair(
				username_from_url or self._credential.username,
				str(self._credential.public_key) if self._credential.public_key else None,
				str(self._credential.private_key),
				passphrase,
			)

		msg = f"remote does not accept {type(self._credential).__name__} credentials"
		raise AuthenticationError(msg, context=context)

	def sideband_progress(self, string: str) -> None:
		"""Check for cancellation on remote progress messages."""
		self.check_aborted()

	def transfer_progress(self, stats: pygit2.remotes.TransferProgress) -> None:
		"""Check for cancellation on every transfer progress update."""
		self.check_aborted()

	def check_aborted(self) -> None:
		"""Raise ``FetchCancelledError`` if cancelled or past the deadline."""
		if self._cancel is not None and self._cancel.is_set():
			msg = "fetch cancelled"
			raise FetchCancelledError(msg, context={"repository": self._repository_url})
		if self._deadline is not None and time.monotonic() > self._deadline:
			msg = "fetch timed out"
			raise FetchCancelledError(msg, context={"repository": self._repository_url})


@contextlib.contextmanager
def scratch_clone(
	url: str,
	credential: Credential,
	transport: Transport,
	*,
	cancel: threading.Event | None = None,
	prefix: str = DEFAULT_SCRATCH_PREFIX,
) -> Iterator[ScratchClone]:
	"""
	Fetch every ref of a repository into a temporary clone.

	The temporary directory is removed when the context exits, whether the
	body succeeded or raised.

	Args:
	    url: Repository URL
	    credential: Credential for the remote
	    transport: Transport configuration for this invocation
	    cancel: Optional event that aborts the fetch
	    prefix: Prefix of the temporary directory name

	Yields:
	    ScratchClone: The populated clone (no checkout yet)

	Raises:
	    AuthenticationError: If the remote rejects or requires credentials
	    TransportError: For any other fetch failure
	    FilesystemError: If the temporary repository cannot be created

	"""
	context = {"repository": url}
	with tempfile.TemporaryDirectory(prefix=prefix) as tmp_dir:
		try:
			repo = pygit2.init_repository(tmp_dir, bare=False)
			transport.apply(repo)
		except (pygit2.GitError, OSError) as e:
			msg = f"initializing repo: {e}"
			raise FilesystemError(msg, stage="fetch", context=context) from e

		try:
			try:
				remote = repo.remotes.create(REMOTE_NAME, url)
			except (pygit2.GitError, ValueError) as e:
				msg = f"creating remote: {e}"
				raise TransportError(msg, context=context) from e

			_fetch_all_refs(remote, url, credential, transport, cancel)
			yield ScratchClone(path=Path(tmp_dir), repository=repo)
		finally:
			repo.free()


def _fetch_all_refs(
	remote: pygit2.Remote,
	url: str,
	credential: Credential,
	transport: Transport,
	cancel: threading.Event | None,
) -> None:
	deadline = time.monotonic() + transport.timeout if transport.timeout is not None else None
	callbacks = FetchCallbacks(credential, repository_url=url, cancel=cancel, deadline=deadline)
	callbacks.check_aborted()
	context = {"repository": url}
	try:
		remote.fetch(refspecs=[FETCH_REFSPEC], callbacks=callbacks, proxy=transport.proxy_url)
	except FetchError:
		raise
	except (pygit2.GitError, OSError, KeyError, ValueError) as e:
		if _AUTH_FAILURE_RE.search(str(e)):
			msg = f"invalid credentials for repository: {e}"
			raise AuthenticationError(msg, context=context) from e
		msg = f"unable to fetch references for repository: {e}"
		raise TransportError(msg, context=context) from e


def resolve_revision(repo: pygit2.Repository, revision: str, *, repository_url: str = "") -> str:
	"""
	Resolve a branch, tag or (abbreviated) commit id to a full commit id.

	Args:
	    repo: Repository holding the fetched refs
	    revision: Revision as requested by the caller
	    repository_url: URL used for error context

	Returns:
	    str: Full hex commit id

	Raises:
	    RevisionResolutionError: If the revision does not name a commit

	"""
	context = {"repository": repository_url, "revision": revision}
	if not revision:
		msg = "resolving revision: empty revision"
		raise RevisionResolutionError(msg, context=context)
	try:
		commit = repo.revparse_single(revision).peel(pygit2.Commit)
	except (KeyError, ValueError, pygit2.GitError) as e:
		msg = f"resolving revision: {revision!r} not found"
		raise RevisionResolutionError(msg, context=context) from e
	return str(commit.id)


def checkout_commit(repo: pygit2.Repository, commit_id: str, *, repository_url: str = "") -> None:
	"""
	Write a commit's tree into the working directory and detach HEAD at it.

	Raises:
	    CheckoutError: If the tree cannot be checked out

	"""
	try:
		commit = repo[commit_id].peel(pygit2.Commit)
		repo.checkout_tree(commit.tree, strategy=CheckoutStrategy.FORCE)
		repo.set_head(commit.id)
	except (KeyError, ValueError, OSError, pygit2.GitError) as e:
		msg = f"checking out revision: {e}"
		raise CheckoutError(msg, context={"repository": repository_url, "commit": commit_id}) from e


@contextlib.contextmanager
def fetch_and_checkout(
	url: str,
	revision: str,
	credential: Credential,
	transport: Transport,
	*,
	cancel: threading.Event | None = None,
	prefix: str = DEFAULT_SCRATCH_PREFIX,
) -> Iterator[tuple[ScratchClone, str]]:
	"""
	Fetch, resolve and check out a revision in a scratch clone.

	Yields:
	    tuple[ScratchClone, str]: The checked-out clone and the resolved commit id

	"""
	with scratch_clone(url, credential, transport, cancel=cancel, prefix=prefix) as clone:
		commit = resolve_revision(clone.repository, revision, repository_url=url)
		if cancel is not None and cancel.is_set():
			msg = "fetch cancelled"
			raise FetchCancelledError(msg, context={"repository": url, "revision": revision})
		checkout_commit(clone.repository, commit, repository_url=url)
		yield clone, commit


class Fetcher:
	"""Runs the full fetch pipeline for one request at a time."""

	def __init__(
		self,
		keychain: Keychain | None = None,
		*,
		env: Mapping[str, str] | None = None,
		proxy_env_vars: Sequence[str] = PROXY_ENV_VARS,
		proxy_timeout: float = DEFAULT_PROXY_TIMEOUT,
		metadata_file_name: str = METADATA_FILE_NAME,
		scratch_prefix: str = DEFAULT_SCRATCH_PREFIX,
	) -> None:
		"""
		Initialize the fetcher.

		Args:
		    keychain: Credential source, anonymous access if None
		    env: Environment the proxy settings are read from
		    proxy_env_vars: Proxy variable names, checked in order
		    proxy_timeout: Timeout in seconds applied through a proxy
		    metadata_file_name: Name of the descriptor written to the metadata dir
		    scratch_prefix: Prefix of scratch clone directories

		"""
		self.keychain = keychain or Keychain()
		self.env = env
		self.proxy_env_vars = tuple(proxy_env_vars)
		self.proxy_timeout = proxy_timeout
		self.metadata_file_name = metadata_file_name
		self.scratch_prefix = scratch_prefix

	def _prepare(self, url: str) -> tuple[Credential, Transport]:
		credential = self.keychain.resolve(url)
		transport = build_https_transport(self.env, timeout=self.proxy_timeout, env_vars=self.proxy_env_vars)
		return credential, transport

	def fetch(self, request: FetchRequest, *, cancel: threading.Event | None = None) -> FetchResult:
		"""
		Materialize ``request.revision`` of ``request.repository_url``.

		The destination is only replaced once the revision has been fetched,
		resolved and checked out. The metadata file is staged before the swap and
		renamed into place right after it, so it always records the commit now
		present in the destination.

		Raises:
		    FetchError: Subclass naming the stage that failed

		"""
		url, revision = request.repository_url, request.revision
		logger.info('Cloning "%s" @ "%s"...', url, revision)
		credential, transport = self._prepare(url)

		with fetch_and_checkout(
			url, revision, credential, transport, cancel=cancel, prefix=self.scratch_prefix
		) as (clone, commit):
			logger.debug("Resolved %r to %s", revision, commit)
			staged = stage_metadata(
				request.metadata_dir,
				url,
				revision,
				commit,
				file_name=self.metadata_file_name,
			)
			try:
				materialize(clone.path, request.destination_dir)
			except BaseException:
				staged.discard()
				raise
			metadata_path = staged.commit()

		logger.info('Successfully cloned "%s" @ "%s" in path "%s"', url, revision, request.destination_dir)
		return FetchResult(
			destination_dir=request.destination_dir,
			repository_url=url,
			revision=revision,
			commit=commit,
			metadata_path=metadata_path,
		)

	def resolve(self, url: str, revision: str, *, cancel: threading.Event | None = None) -> str:
		"""
		Resolve a revision to its full commit id without touching any workspace.

		Raises:
		    FetchError: Subclass naming the stage that failed

		"""
		logger.info('Resolving "%s" @ "%s"...', url, revision)
		credential, transport = self._prepare(url)
		with scratch_clone(url, credential, transport, cancel=cancel, prefix=self.scratch_prefix) as clone:
			return resolve_revision(clone.repository, revision, repository_url=url)
