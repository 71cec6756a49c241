"""Project metadata descriptor written next to a fetched workspace."""

from __future__ import annotations

import logging
import os
import tempfile
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

import tomli_w
from pydantic import BaseModel, Field

from gitfetch.git.errors import FilesystemError

logger = logging.getLogger(__name__)

METADATA_FILE_NAME = "project-metadata.toml"
METADATA_STAGE = "metadata write"

COMMIT_ID_PATTERN = r"^[0-9a-f]{40}(?:[0-9a-f]{24})?$"


class GitMetadata(BaseModel):
	"""What was asked for."""

	repository: str
	revision: str


class GitVersion(BaseModel):
	"""What it resolved to."""

	commit: str = Field(pattern=COMMIT_ID_PATTERN)


class GitSource(BaseModel):
	"""The ``source`` table."""

	type: Literal["git"] = "git"
	metadata: GitMetadata
	version: GitVersion


class ProjectMetadata(BaseModel):
	"""Root of ``project-metadata.toml``."""

	source: GitSource

	@classmethod
	def for_commit(cls, repository_url: str, revision: str, commit: str) -> ProjectMetadata:
		"""Build the descriptor for a resolved commit."""
		return cls(
			source=GitSource(
				metadata=GitMetadata(repository=repository_url, revision=revision),
				version=GitVersion(commit=commit),
			)
		)

	@classmethod
	def from_file(cls, path: Path) -> ProjectMetadata:
		"""Read a descriptor back from disk."""
		with path.open("rb") as f:
			return cls.model_validate(tomllib.load(f))

	def to_toml(self) -> str:
		"""Encode as TOML."""
		return tomli_w.dumps(self.model_dump())


def check_metadata_dir(
	metadata_dir: Path,
	*,
	repository_url: str = "",
	file_name: str = METADATA_FILE_NAME,
) -> None:
	"""
	Verify the metadata directory exists and is writable.

	Called before the workspace is replaced so that a misconfigured metadata
	directory cannot leave a new workspace next to a stale descriptor.

	Raises:
	    FilesystemError: If the directory is missing or not writable

	"""
	target = Path(metadata_dir) / file_name
	if not Path(metadata_dir).is_dir() or not os.access(metadata_dir, os.W_OK | os.X_OK):
		msg = f"invalid metadata destination '{target}' for git repository: {repository_url}"
		raise FilesystemError(msg, stage=METADATA_STAGE, context={"path": str(metadata_dir)})


@dataclass(frozen=True)
class StagedMetadata:
	"""A descriptor written under a temporary name, not yet visible to readers."""

	tmp_path: Path
	target: Path
	repository_url: str

	def commit(self) -> Path:
		"""
		Rename the staged file over the descriptor.

		Raises:
		    FilesystemError: If the rename fails; the staged file is removed

		"""
		try:
			self.tmp_path.replace(self.target)
		except OSError as e:
			self.discard()
			raise _write_error(self.target, self.repository_url, e) from e
		logger.debug("Wrote project metadata to %s", self.target)
		return self.target

	def discard(self) -> None:
		"""Remove the staged file, leaving any existing descriptor untouched."""
		self.tmp_path.unlink(missing_ok=True)


def stage_metadata(
	metadata_dir: Path,
	repository_url: str,
	requested_revision: str,
	resolved_commit: str,
	*,
	file_name: str = METADATA_FILE_NAME,
) -> StagedMetadata:
	"""
	Write the descriptor for a fetched revision to a temporary file.

	The file lives in ``metadata_dir`` so that ``StagedMetadata.commit`` is a
	same-directory rename. Staging before the workspace is replaced means that
	running out of space or permissions fails while the old workspace and the
	old descriptor still agree.

	Args:
	    metadata_dir: Existing directory that receives the file
	    repository_url: Repository the workspace was fetched from
	    requested_revision: Revision string as requested
	    resolved_commit: Full commit id it resolved to
	    file_name: Name of the descriptor file

	Returns:
	    StagedMetadata: Handle to commit or discard the staged file

	Raises:
	    FilesystemError: If the directory is unusable or the file cannot be written

	"""
	check_metadata_dir(metadata_dir, repository_url=repository_url, file_name=file_name)
	target = Path(metadata_dir) / file_name
	document = ProjectMetadata.for_commit(repository_url, requested_revision, resolved_commit).to_toml()

	tmp_path: Path | None = None
	try:
		with tempfile.NamedTemporaryFile(
			"w",
			encoding="utf-8",
			dir=metadata_dir,
			prefix=f".{file_name}.",
			delete=False,
		) as f:
			tmp_path = Path(f.name)
			f.write(document)
		tmp_path.chmod(0o644)
	except OSError as e:
		if tmp_path is not None:
			tmp_path.unlink(missing_ok=True)
		raise _write_error(target, repository_url, e) from e
	return StagedMetadata(tmp_path=tmp_path, target=target, repository_url=repository_url)


def emit_metadata(
	metadata_dir: Path,
	repository_url: str,
	requested_revision: str,
	resolved_commit: str,
	*,
	file_name: str = METADATA_FILE_NAME,
) -> Path:
	"""
	Write the metadata descriptor for a fetched revision.

	The file is written to a temporary name in the same directory and then
	renamed over the target, so readers never see a partial descriptor.

	Returns:
	    Path: Path of the written file

	Raises:
	    FilesystemError: If the file cannot be created

	"""
	staged = stage_metadata(
		metadata_dir,
		repository_url,
		requested_revision,
		resolved_commit,
		file_name=file_name,
	)
	return staged.commit()


def _write_error(target: Path, repository_url: str, error: OSError) -> FilesystemError:
	msg = f"invalid metadata destination '{target}' for git repository: {repository_url}"
	return FilesystemError(msg, stage=METADATA_STAGE, context={"error": error.strerror or str(error)})
