import tarfile

import pytest
import zstandard

from backup_config import BackupConfig

FOLDER_CONFIG = b"""<?xml version='1.1' encoding='UTF-8'?>
<com.cloudbees.hudson.plugins.folder.Folder plugin="cloudbees-folder@6.815">
  <description>team folder</description>
</com.cloudbees.hudson.plugins.folder.Folder>
"""

FREESTYLE_CONFIG = b"""<?xml version='1.1' encoding='UTF-8'?>
<project>
  <description>plain job</description>
</project>
"""


def _write(path, data=b"x"):
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(data, str):
        data = data.encode("utf-8")
    path.write_bytes(data)
    return path


def _make_job(job_dir, config=FREESTYLE_CONFIG, builds=True):
    job_dir.mkdir(parents=True, exist_ok=True)
    if config is not None:
        _write(job_dir / "config.xml", config)
    _write(job_dir / "nextBuildNumber", b"3\n")
    _write(job_dir / "scm-polling.log", b"polling")
    _write(job_dir / "workspace" / "checkout.txt", b"workspace")
    if builds:
        _write(job_dir / "builds" / "1" / "build.xml", b"<build/>")
        _write(job_dir / "builds" / "1" / "log", b"Started by user admin")
        _write(job_dir / "builds" / "1" / "archive" / "target" / "app.jar", b"artifact")
        _write(job_dir / "builds" / "2" / "archive" / "report.html", b"artifact")
        _write(job_dir / "builds" / "2" / "log", b"Finished: SUCCESS")
    return job_dir


@pytest.fixture
def jenkins_home(tmp_path):
    """A small Jenkins home with nested folders, builds and artifacts."""
    home = tmp_path / "jenkins_home"
    _write(home / "config.xml", b"<hudson/>")
    _write(home / "hudson.model.UpdateCenter.xml", b"<sites/>")
    _write(home / "identity.jks", b"keystore")
    _write(home / "queue.bak", b"ignored")
    _write(home / "users" / "admin_123" / "config.xml", b"<user/>")
    _write(home / "secrets" / "master.key", b"secret")
    (home / "nodes").mkdir(parents=True)
    _write(home / "plugins" / "git.jpi", b"plugin")
    _write(home / "plugins" / "git" / "META-INF" / "MANIFEST.MF", b"Manifest-Version: 1.0")
    _write(home / "logs" / "tasks" / "run.log", b"ignored")

    jobs = home / "jobs"
    _make_job(jobs / "leaf")
    _make_job(jobs / "team", config=FOLDER_CONFIG, builds=False)
    _make_job(jobs / "team" / "jobs" / "child")
    _make_job(jobs / "team" / "jobs" / "sub", config=FOLDER_CONFIG, builds=False)
    _make_job(jobs / "team" / "jobs" / "sub" / "jobs" / "deep")
    _make_job(jobs / "plain", builds=False)
    _make_job(jobs / "plain" / "jobs" / "ghost")
    _make_job(jobs / "noconfig", config=None, builds=False)
    _make_job(jobs / "noconfig" / "jobs" / "ghost")
    _write(jobs / "stray-file.txt", b"not a job")
    return home


@pytest.fixture
def make_config(tmp_path):
    def _make(jenkins_home, **kwargs):
        kwargs.setdefault("dest_file", tmp_path / "backups" / "jenkins.tar.zst")
        kwargs.setdefault("tmp_dir", tmp_path / "scratch")
        return BackupConfig(jenkins_home=jenkins_home, **kwargs)
    return _make


def read_archive(path):
    """Return {member name: file bytes or None for directories}."""
    entries = {}
    dctx = zstandard.ZstdDecompressor()
    with open(path, "rb") as fh, dctx.stream_reader(fh) as reader:
        with tarfile.open(fileobj=reader, mode="r|") as tar:
            for member in tar:
                if member.isfile():
                    entries[member.name] = tar.extractfile(member).read()
                else:
                    entries[member.name] = None
    return entries


@pytest.fixture
def archive_entries():
    return read_archive
