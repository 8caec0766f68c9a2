import errno
import logging
import os
import shutil
import tarfile
from contextlib import contextmanager
from pathlib import Path

import zstandard

DEFAULT_SUFFIX = ".tar.zst"


class BackupError(RuntimeError):
    """Base exception for fatal backup failures."""


def _remove_path(path):
    path = Path(path)
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    elif path.exists() or path.is_symlink():
        path.unlink()


@contextmanager
def staging_area(config):
    """
    Guarantee removal of the staging directory and temp archive.

    Cleanup runs on success, on any exception and on interruption
    (KeyboardInterrupt, or SystemExit raised from a signal handler).
    Safe to use when nothing was created yet.
    """
    logger = logging.getLogger(__name__)
    try:
        yield config.staging_dir
    finally:
        logger.info(f"Cleaning up staging area: {config.staging_dir}")
        _remove_path(config.staging_dir)
        _remove_path(config.tmp_archive)


def archive_suffix(dest_file):
    """
    Suffix shared by the backup set, e.g. ".tar.zst" for
    "jenkins-2026.10.18.tar.zst". Dots in the stem are ignored.
    """
    suffixes = Path(dest_file).suffixes
    if not suffixes:
        return DEFAULT_SUFFIX
    if len(suffixes) >= 2 and suffixes[-2] == ".tar":
        return ".tar" + suffixes[-1]
    return suffixes[-1]


class BackupManager:
    def __init__(self, config):
        self.logger = logging.getLogger(__name__)
        self.config = config

    def create_archive(self, source_dir, archive_path, arcname):
        """
        Stream a zstd compressed tar of source_dir into archive_path.

        :param source_dir: Directory to archive
        :param archive_path: Path of the archive to write
        :param arcname: Name of the single top-level entry inside the archive
        :return: Path to the created archive
        """
        archive_path = Path(archive_path)
        try:
            archive_path.parent.mkdir(parents=True, exist_ok=True)
            self.logger.info(f"Creating archive {archive_path} from {source_dir}")

            compressor = zstandard.ZstdCompressor()
            with open(archive_path, "wb") as fh:
                with compressor.stream_writer(fh, closefd=False) as writer:
                    with tarfile.open(fileobj=writer, mode="w|") as tar:
                        tar.add(str(source_dir), arcname=arcname)

            self.logger.info(f"Archive created: {archive_path} ({archive_path.stat().st_size} bytes)")
            return archive_path

        except zstandard.ZstdError as e:
            self.logger.error(f"Compression failed for {archive_path}: {e}")
            raise BackupError(f"Compression failed for {archive_path}: {e}") from e
        except OSError as e:
            self.logger.error(f"Archive creation failed: {e}")
            raise

    def publish_archive(self, archive_path, dest_file):
        """
        Move the finished archive to dest_file, replacing any existing file.

        A same-filesystem move is a single rename. Across filesystems the
        archive is copied to a hidden sibling of dest_file, checked and then
        renamed into place, so dest_file is never left truncated.

        :param archive_path: Temporary archive to move
        :param dest_file: Final destination path
        :return: Path to the published archive
        """
        archive_path = Path(archive_path)
        dest_file = Path(dest_file)
        dest_file.parent.mkdir(parents=True, exist_ok=True)

        try:
            os.replace(archive_path, dest_file)
            self.logger.info(f"Backup published: {dest_file}")
            return dest_file
        except OSError as e:
            if e.errno != errno.EXDEV:
                self.logger.error(f"Failed to move {archive_path} to {dest_file}: {e}")
                raise

        self.logger.info(f"{dest_file.parent} is on another filesystem, copying archive")
        partial = dest_file.with_name(f".{dest_file.name}.{os.getpid()}.partial")
        try:
            shutil.copyfile(archive_path, partial)
            expected = archive_path.stat().st_size
            copied = partial.stat().st_size
            if copied != expected:
                raise BackupError(f"Copied archive size mismatch: {copied} != {expected} bytes")
            os.replace(partial, dest_file)
        except (OSError, BackupError) as e:
            self.logger.error(f"Failed to publish {dest_file}: {e}")
            if partial.exists():
                partial.unlink()
            raise

        archive_path.unlink()
        self.logger.info(f"Backup published: {dest_file}")
        return dest_file

    def list_backups(self, dest_file):
        """
        Archives living next to dest_file, oldest first by modification time.
        """
        backup_dir = Path(dest_file).parent
        suffix = archive_suffix(dest_file)
        if not backup_dir.is_dir():
            return []

        backups = [
            path for path in backup_dir.iterdir()
            if path.is_file() and not path.name.startswith(".") and path.name.endswith(suffix)
        ]
        backups.sort(key=lambda path: path.stat().st_mtime)
        return backups

    def prune_backups(self, dest_file, keep):
        """
        Delete all but the newest `keep` archives next to dest_file.

        :param dest_file: Path of the archive just published
        :param keep: Number of archives to keep; 0 disables pruning
        :return: List of removed archive paths
        """
        if keep <= 0:
            self.logger.info("Retention disabled, keeping all backups")
            return []

        backups = self.list_backups(dest_file)
        if len(backups) <= keep:
            self.logger.info(f"Found {len(backups)} backups, nothing to prune (keep={keep})")
            return []

        removed = []
        for old_backup in backups[:-keep]:
            try:
                old_backup.unlink()
                removed.append(old_backup)
                self.logger.info(f"Removed old backup: {old_backup}")
            except OSError as e:
                self.logger.error(f"Failed to remove old backup {old_backup}: {e}")
                raise

        self.logger.info(f"Kept {keep} newest backups, removed {len(removed)}")
        return removed
