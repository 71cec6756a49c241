"""
Replace a workspace directory with a checked-out working tree.

The new tree is staged in a sibling directory and renamed into place, so the
destination holds either the complete previous tree or the complete new one.
When the destination is a mount point (it cannot be renamed) the swap is done
entry by entry inside it instead.

"""

from __future__ import annotations

import logging
import os
import shutil
import stat
import tempfile
import uuid
from pathlib import Path

from gitfetch.git.errors import FilesystemError

logger = logging.getLogger(__name__)

VCS_DIR_NAME = ".git"
DEFAULT_DIR_MODE = 0o755


def copy_tree(source_dir: Path, destination_dir: Path, *, exclude: frozenset[str] = frozenset()) -> int:
	"""
	Recursively copy a directory, preserving structure, symlinks and modes.

	Args:
	    source_dir: Directory to copy from
	    destination_dir: Existing, empty directory to copy into
	    exclude: Top-level entry names to skip

	Returns:
	    int: Number of files and symlinks copied

	"""
	copied = 0
	for entry in sorted(os.scandir(source_dir), key=lambda e: e.name):
		if entry.name in exclude:
			continue
		src = Path(entry.path)
		dst = destination_dir / entry.name
		if entry.is_symlink():
			dst.symlink_to(os.readlink(src))
			copied += 1
		elif entry.is_dir():
			dst.mkdir()
			copied += copy_tree(src, dst)
			shutil.copymode(src, dst)
		else:
			shutil.copyfile(src, dst)
			shutil.copymode(src, dst)
			copied += 1
	return copied


def materialize(source_dir: Path, destination_dir: Path) -> Path:
	"""
	Replace ``destination_dir`` with the working tree at ``source_dir``.

	Everything but the ``.git`` directory is copied. The destination's own
	permission bits are kept when it already exists.

	Args:
	    source_dir: Working tree of the scratch clone
	    destination_dir: Workspace to replace

	Returns:
	    Path: The destination path

	Raises:
	    FilesystemError: If staging or swapping fails; the destination is left
	        as it was

	"""
	source = Path(source_dir)
	destination = Path(destination_dir).absolute()
	context = {"path": str(destination)}

	if destination.is_dir() and os.path.ismount(destination):
		return _materialize_into_mount(source, destination)

	try:
		destination.parent.mkdir(parents=True, exist_ok=True)
		staging = Path(tempfile.mkdtemp(prefix=f".{destination.name}.staging-", dir=destination.parent))
	except OSError as e:
		msg = f"creating staging directory: {e.strerror or e}"
		raise FilesystemError(msg, context=context) from e

	try:
		count = copy_tree(source, staging, exclude=frozenset({VCS_DIR_NAME}))
		mode = stat.S_IMODE(destination.stat().st_mode) if destination.is_dir() else DEFAULT_DIR_MODE
		staging.chmod(mode)
		_swap(staging, destination)
	except OSError as e:
		shutil.rmtree(staging, ignore_errors=True)
		msg = f"copying directory: {e.strerror or e}"
		raise FilesystemError(msg, context=context) from e

	logger.debug("Materialized %d entries into %s", count, destination)
	return destination


def _swap(staging: Path, destination: Path) -> None:
	"""Rename ``staging`` onto ``destination``, restoring the old tree on failure."""
	backup: Path | None = None
	if destination.exists() or destination.is_symlink():
		backup = destination.with_name(f".{destination.name}.previous-{uuid.uuid4().hex[:8]}")
		destination.rename(backup)
	try:
		staging.rename(destination)
	except OSError:
		if backup is not None:
			backup.rename(destination)
		raise
	if backup is not None:
		try:
			_remove(backup)
		except OSError as e:
			# The new tree is already in place
			logger.warning("Unable to remove previous workspace %s: %s", backup, e)


def _materialize_into_mount(source: Path, destination: Path) -> Path:
	"""Swap the contents of a mount point, one top-level entry at a time."""
	context = {"path": str(destination)}
	token = uuid.uuid4().hex[:8]
	staging = destination / f".gitfetch-staging-{token}"
	previous = destination / f".gitfetch-previous-{token}"
	try:
		staging.mkdir()
		copy_tree(source, staging, exclude=frozenset({VCS_DIR_NAME}))
		previous.mkdir()
	except OSError as e:
		shutil.rmtree(staging, ignore_errors=True)
		shutil.rmtree(previous, ignore_errors=True)
		msg = f"copying directory: {e.strerror or e}"
		raise FilesystemError(msg, context=context) from e

	moved_out: list[str] = []
	moved_in: list[str] = []
	try:
		for entry in list(destination.iterdir()):
			if entry not in (staging, previous):
				entry.rename(previous / entry.name)
				moved_out.append(entry.name)
		for entry in list(staging.iterdir()):
			entry.rename(destination / entry.name)
			moved_in.append(entry.name)
	except OSError as e:
		_restore_mount(destination, staging, previous, moved_in, moved_out)
		msg = f"replacing mounted workspace: {e.strerror or e}"
		raise FilesystemError(msg, context=context) from e

	for leftover in (staging, previous):
		try:
			shutil.rmtree(leftover)
		except OSError as e:
			# The new tree is already in place
			logger.warning("Unable to remove %s: %s", leftover, e)
	logger.debug("Replaced contents of mounted workspace %s", destination)
	return destination


def _restore_mount(
	destination: Path,
	staging: Path,
	previous: Path,
	moved_in: list[str],
	moved_out: list[str],
) -> None:
	"""Undo a partial entry-by-entry swap so the mount holds the old tree again."""
	try:
		for name in reversed(moved_in):
			(destination / name).rename(staging / name)
		for name in reversed(moved_out):
			(previous / name).rename(destination / name)
	except OSError as e:
		msg = f"restoring mounted workspace: {e.strerror or e}"
		raise FilesystemError(
			msg,
			context={"path": str(destination), "previous": str(previous), "staging": str(staging)},
		) from e
	shutil.rmtree(staging, ignore_errors=True)
	shutil.rmtree(previous, ignore_errors=True)


def _remove(path: Path) -> None:
	if path.is_dir() and not path.is_symlink():
		shutil.rmtree(path)
	else:
		path.unlink()
