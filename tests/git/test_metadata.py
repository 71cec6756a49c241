"""Tests for the project metadata descriptor."""

from __future__ import annotations

import tomllib
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from gitfetch.git.errors import FilesystemError
from gitfetch.git.metadata import (
	METADATA_FILE_NAME,
	ProjectMetadata,
	check_metadata_dir,
	emit_metadata,
	stage_metadata,
)
from tests.base import FileSystemTestBase

COMMIT = "0123456789abcdef0123456789abcdef01234567"
URL = "https://github.com/org/repo"


@pytest.mark.unit
@pytest.mark.fs
class TestEmitMetadata(FileSystemTestBase):
	"""Writing project-metadata.toml."""

	def test_layout(self) -> None:
		"""The file has the source.type / source.metadata / source.version tables."""
		path = emit_metadata(self.temp_dir, URL, "main", COMMIT)

		assert path == self.temp_dir / METADATA_FILE_NAME
		with path.open("rb") as f:
			data = tomllib.load(f)
		assert data == {
			"source": {
				"type": "git",
				"metadata": {"repository": URL, "revision": "main"},
				"version": {"commit": COMMIT},
			}
		}

	def test_overwrites_previous(self) -> None:
		"""A second write replaces the first descriptor."""
		emit_metadata(self.temp_dir, URL, "v1", COMMIT)
		emit_metadata(self.temp_dir, URL, "v2", "f" * 40)

		metadata = ProjectMetadata.from_file(self.temp_dir / METADATA_FILE_NAME)
		assert metadata.source.metadata.revision == "v2"
		assert metadata.source.version.commit == "f" * 40
		assert [p.name for p in self.temp_dir.iterdir()] == [METADATA_FILE_NAME]

	def test_readable_permissions(self) -> None:
		"""The descriptor is world readable like a normally created file."""
		path = emit_metadata(self.temp_dir, URL, "main", COMMIT)
		assert path.stat().st_mode & 0o777 == 0o644

	def test_custom_file_name(self) -> None:
		"""The descriptor name can be changed."""
		path = emit_metadata(self.temp_dir, URL, "main", COMMIT, file_name="source.toml")
		assert path.name == "source.toml"
		assert path.exists()

	def test_special_characters_are_escaped(self) -> None:
		"""Quotes and backslashes in values survive a round trip."""
		revision = 'weird"rev\\name'
		emit_metadata(self.temp_dir, URL, revision, COMMIT)
		metadata = ProjectMetadata.from_file(self.temp_dir / METADATA_FILE_NAME)
		assert metadata.source.metadata.revision == revision

	def test_missing_directory(self) -> None:
		"""A missing metadata directory is a metadata write failure."""
		with pytest.raises(FilesystemError) as exc_info:
			emit_metadata(self.temp_dir / "missing", URL, "main", COMMIT)

		error = exc_info.value
		assert error.stage == "metadata write"
		assert error.exit_code == 16
		assert error.retryable
		assert f"for git repository: {URL}" in str(error)

	def test_failed_replace_leaves_no_temp_file(self) -> None:
		"""A failed rename cleans up the temporary file."""
		with patch("pathlib.Path.replace", side_effect=OSError(28, "No space left on device")):
			with pytest.raises(FilesystemError):
				emit_metadata(self.temp_dir, URL, "main", COMMIT)

		assert list(self.temp_dir.iterdir()) == []


@pytest.mark.unit
@pytest.mark.fs
class TestStageMetadata(FileSystemTestBase):
	"""Staging the descriptor ahead of the workspace swap."""

	def test_staged_file_is_hidden_until_commit(self) -> None:
		"""Readers keep seeing the old descriptor until commit."""
		emit_metadata(self.temp_dir, URL, "v1", COMMIT)

		staged = stage_metadata(self.temp_dir, URL, "v2", "f" * 40)

		assert staged.tmp_path.exists()
		assert ProjectMetadata.from_file(self.temp_dir / METADATA_FILE_NAME).source.metadata.revision == "v1"

		path = staged.commit()

		assert ProjectMetadata.from_file(path).source.metadata.revision == "v2"
		assert [p.name for p in self.temp_dir.iterdir()] == [METADATA_FILE_NAME]

	def test_discard(self) -> None:
		"""Discarding removes the staged file and keeps the old descriptor."""
		emit_metadata(self.temp_dir, URL, "v1", COMMIT)

		stage_metadata(self.temp_dir, URL, "v2", "f" * 40).discard()

		assert [p.name for p in self.temp_dir.iterdir()] == [METADATA_FILE_NAME]
		assert ProjectMetadata.from_file(self.temp_dir / METADATA_FILE_NAME).source.metadata.revision == "v1"

	def test_write_failure(self) -> None:
		"""A failed write is a metadata write error and leaves nothing behind."""
		with patch("pathlib.Path.chmod", side_effect=OSError(28, "No space left on device")):
			with pytest.raises(FilesystemError) as exc_info:
				stage_metadata(self.temp_dir, URL, "main", COMMIT)

		assert exc_info.value.stage == "metadata write"
		assert list(self.temp_dir.iterdir()) == []


@pytest.mark.unit
@pytest.mark.fs
class TestCheckMetadataDir(FileSystemTestBase):
	"""Pre-flight check of the metadata directory."""

	def test_existing_directory(self) -> None:
		"""A writable directory passes."""
		check_metadata_dir(self.temp_dir)

	def test_missing_directory(self) -> None:
		"""A missing directory fails."""
		with pytest.raises(FilesystemError, match="invalid metadata destination"):
			check_metadata_dir(self.temp_dir / "missing", repository_url=URL)

	def test_file_instead_of_directory(self) -> None:
		"""A regular file is not a metadata directory."""
		path = self.create_test_file("not-a-dir", "")
		with pytest.raises(FilesystemError):
			check_metadata_dir(path)


@pytest.mark.unit
class TestProjectMetadata:
	"""The descriptor model."""

	def test_rejects_bad_commit(self) -> None:
		"""Only full hex commit ids are accepted."""
		with pytest.raises(ValidationError):
			ProjectMetadata.for_commit(URL, "main", "abc123")

	def test_accepts_sha256_commit(self) -> None:
		"""SHA-256 repositories have 64 character ids."""
		metadata = ProjectMetadata.for_commit(URL, "main", "a" * 64)
		assert metadata.source.version.commit == "a" * 64

	def test_to_toml(self) -> None:
		"""The TOML text contains the source table."""
		text = ProjectMetadata.for_commit(URL, "main", COMMIT).to_toml()
		assert 'type = "git"' in text
		assert f'commit = "{COMMIT}"' in text
