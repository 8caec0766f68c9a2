import logging
import os
import shutil
from pathlib import Path

from backup_config import ARC_NAME
from backups import BackupError, BackupManager, archive_suffix, staging_area
from drive_upload import DriveUploader

FOLDER_MARKER = b"com.cloudbees.hudson.plugins.folder.Folder"
STAGING_DIRS = ("jobs", "users", "secrets", "nodes", "plugins")
STATE_DIRS = ("users", "secrets", "nodes")


def _is_non_empty_dir(path):
    if not path.is_dir():
        return False
    with os.scandir(path) as entries:
        return any(True for _ in entries)


def _ignore_build_artifacts(src, names):
    # Keep archive/ itself but none of its contents
    if os.path.basename(src) == "archive":
        return set(names)
    return set()


class JenkinsBackupManager:
    def __init__(self, config):
        """
        Initialize Jenkins Backup Manager
        :param config: BackupConfig for this run
        """
        self.logger = logging.getLogger(__name__)
        self.config = config
        self.jenkins_dir = config.jenkins_home
        self.staging_dir = config.staging_dir
        self.jobs_root = self.jenkins_dir / "jobs"

    def prepare_staging(self):
        """
        Clear leftovers of an earlier run and create the staging layout
        """
        try:
            if self.staging_dir.exists():
                shutil.rmtree(self.staging_dir)
            if self.config.tmp_archive.exists():
                self.config.tmp_archive.unlink()

            for name in STAGING_DIRS:
                (self.staging_dir / name).mkdir(parents=True, exist_ok=True)
            self.logger.info(f"Staging area ready: {self.staging_dir}")

        except OSError as e:
            self.logger.error(f"Failed to prepare staging area {self.staging_dir}: {e}")
            raise

    def copy_root_files(self):
        """
        Copy top-level *.xml configuration and *.jks keystore files
        :return: Number of files copied
        """
        copied = 0
        for pattern in ("*.xml", "*.jks"):
            for path in sorted(self.jenkins_dir.glob(pattern)):
                # Shell globs skip dotfiles
                if path.name.startswith(".") or not path.is_file():
                    continue
                shutil.copy2(path, self.staging_dir / path.name)
                copied += 1
        self.logger.info(f"Copied {copied} root configuration files")
        return copied

    def _copy_tree_contents(self, name):
        source = self.jenkins_dir / name
        if not _is_non_empty_dir(source):
            self.logger.info(f"Skipping {name}: {source} is missing or empty")
            return False

        self.logger.info(f"Copying {source}")
        shutil.copytree(source, self.staging_dir / name, symlinks=True, dirs_exist_ok=True)
        return True

    def copy_state_dirs(self):
        """
        Copy users, secrets and nodes when present and non-empty
        """
        for name in STATE_DIRS:
            self._copy_tree_contents(name)

    def copy_plugins(self):
        """
        Copy the plugins directory when plugin backup is enabled
        :return: True if plugins were copied
        """
        if not self.config.copy_plugins:
            self.logger.info("Plugin backup disabled")
            return False
        return self._copy_tree_contents("plugins")

    @staticmethod
    def is_folder_job(job_dir):
        """
        True if the job's config.xml declares a Folder job.

        Matches the marker anywhere in the file, case-sensitive.
        """
        config_xml = Path(job_dir) / "config.xml"
        if not config_xml.is_file():
            return False
        try:
            with open(config_xml, "rb") as f:
                return FOLDER_MARKER in f.read()
        except PermissionError as e:
            logging.getLogger(__name__).warning(f"Cannot read {config_xml}, treating job as a leaf: {e}")
            return False

    def backup_job(self, job_dir, dest_dir):
        """
        Copy one job's configuration and build history, without artifacts
        :param job_dir: Source job directory
        :param dest_dir: Mirrored directory in the staging area
        """
        dest_dir.mkdir(parents=True, exist_ok=True)

        with os.scandir(job_dir) as entries:
            for entry in entries:
                if not entry.is_file():
                    continue
                if entry.name.endswith(".xml") or entry.name == "nextBuildNumber":
                    shutil.copy2(entry.path, dest_dir / entry.name)

        builds_dir = job_dir / "builds"
        if builds_dir.is_dir():
            shutil.copytree(
                builds_dir,
                dest_dir / "builds",
                symlinks=True,
                ignore=_ignore_build_artifacts,
                dirs_exist_ok=True,
            )

    def backup_jobs(self, run_in_path, rel_depth=Path()):
        """
        Recursively mirror a jobs directory into the staging area
        :param run_in_path: Source jobs directory
        :param rel_depth: Path of run_in_path relative to the jobs root
        """
        if not run_in_path.is_dir():
            return

        with os.scandir(run_in_path) as entries:
            job_names = [entry.name for entry in entries if entry.is_dir(follow_symlinks=False)]

        for job_name in job_names:
            job_dir = run_in_path / job_name
            rel_job = rel_depth / job_name
            self.logger.info(f"Backing up job: {rel_job.as_posix()}")
            self.backup_job(job_dir, self.staging_dir / "jobs" / rel_job)

            if self.is_folder_job(job_dir):
                self.backup_jobs(job_dir / "jobs", rel_job / "jobs")

    def assemble(self):
        """
        Populate the staging area from the Jenkins home directory
        """
        if not self.jenkins_dir.is_dir():
            raise BackupError(f"Jenkins home not found: {self.jenkins_dir}")

        try:
            self.prepare_staging()
            self.copy_root_files()
            self.copy_state_dirs()
            if _is_non_empty_dir(self.jobs_root):
                self.backup_jobs(self.jobs_root)
            self.copy_plugins()

        except OSError as e:
            self.logger.error(f"Copying Jenkins state failed: {e}")
            raise

    def run(self):
        """
        Execute the complete backup process
        :return: Path to the published archive
        """
        self.logger.info(f"Starting Jenkins backup of {self.jenkins_dir} to {self.config.dest_file}")
        backup_manager = BackupManager(self.config)

        with staging_area(self.config):
            self.assemble()
            archive = backup_manager.create_archive(self.staging_dir, self.config.tmp_archive, ARC_NAME)
            backup_file = backup_manager.publish_archive(archive, self.config.dest_file)
            backup_manager.prune_backups(backup_file, self.config.keep)

        if self.config.drive_folder_id:
            uploader = DriveUploader(self.config.drive_folder_id, self.config.credentials_path)
            uploader.upload(backup_file)
            if self.config.keep > 0:
                uploader.clean_folder(keep=self.config.keep, suffix=archive_suffix(backup_file))

        self.logger.info(f"Jenkins backup completed successfully: {backup_file}")
        return backup_file
