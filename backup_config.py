import argparse
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

CUR_DIR = Path(__file__).resolve().parent
TMP_DIR = CUR_DIR / "tmp"
ARC_NAME = "jenkins-backup"
TMP_TAR_NAME = "archive.tar.zst"

USAGE = "%(prog)s -j /path/to/jenkins_home -d /path/to/backup/archive.tar.zst [-p] [-k N]"


@dataclass(frozen=True)
class BackupConfig:
    """
    Settings for a single backup run, built once from the command line.

    :param jenkins_home: Jenkins home directory to back up
    :param dest_file: Path the finished archive is published to
    :param copy_plugins: Include the plugins directory in the archive
    :param keep: Number of archives to keep next to dest_file (0 keeps all)
    :param tmp_dir: Scratch directory holding the staging area and temp archive
    :param drive_folder_id: Google Drive folder to upload the archive to
    :param credentials_path: Service account JSON used for the Drive upload
    """
    jenkins_home: Path
    dest_file: Path
    copy_plugins: bool = False
    keep: int = 0
    tmp_dir: Path = TMP_DIR
    drive_folder_id: Optional[str] = None
    credentials_path: Path = Path("cred.json")

    def __post_init__(self):
        if not self.jenkins_home:
            raise ValueError("Jenkins home path must not be empty")
        if not self.dest_file:
            raise ValueError("Destination path must not be empty")
        if self.keep < 0:
            raise ValueError(f"Retention count must be >= 0, got {self.keep}")
        # Frozen, so normalise str arguments through object.__setattr__
        for name in ("jenkins_home", "dest_file", "tmp_dir", "credentials_path"):
            object.__setattr__(self, name, Path(getattr(self, name)))

    @property
    def staging_dir(self) -> Path:
        return self.tmp_dir / ARC_NAME

    @property
    def tmp_archive(self) -> Path:
        return self.tmp_dir / TMP_TAR_NAME


def _retention_count(value):
    try:
        count = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid retention count: {value!r}")
    if count < 0:
        raise argparse.ArgumentTypeError(f"retention count must be >= 0: {value!r}")
    return count


def build_parser():
    parser = argparse.ArgumentParser(
        prog="jenkins-backup",
        usage=USAGE,
        description="Back up a Jenkins home directory into a tar.zst archive.",
    )
    parser.add_argument("-j", dest="jenkins_home", required=True, help="Path to Jenkins Home directory.")
    parser.add_argument("-d", dest="dest_file", required=True, help="Path to backup archive.")
    parser.add_argument("-p", dest="copy_plugins", action="store_true", help="Include plugins in the backup.")
    parser.add_argument(
        "-k",
        dest="keep",
        type=_retention_count,
        default=0,
        help="Number of backup archives to keep in the destination directory (0 keeps all).",
    )
    parser.add_argument(
        "-t",
        dest="tmp_dir",
        default=os.environ.get("JENKINS_BACKUP_TMP_DIR", str(TMP_DIR)),
        help="Scratch directory for the staging area (default: tmp/ next to this tool).",
    )
    parser.add_argument("-g", dest="drive_folder_id", default=None, help="Google Drive folder ID to upload the archive to.")
    parser.add_argument(
        "-c",
        dest="credentials_path",
        default="cred.json",
        help="Service account credentials JSON for the Google Drive upload.",
    )
    return parser


def parse_args(argv=None) -> BackupConfig:
    """
    Parse command line flags into a BackupConfig.

    Exits with status 2 and the usage text on missing or malformed flags.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.jenkins_home or not args.dest_file:
        parser.error("both -j and -d must be non-empty")

    return BackupConfig(
        jenkins_home=Path(args.jenkins_home),
        dest_file=Path(args.dest_file),
        copy_plugins=args.copy_plugins,
        keep=args.keep,
        tmp_dir=Path(args.tmp_dir),
        drive_folder_id=args.drive_folder_id,
        credentials_path=Path(args.credentials_path),
    )
