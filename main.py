import logging
import signal
import sys

from backup_config import parse_args
from backups import BackupError
from jenkins_backup import JenkinsBackupManager


def _exit_on_signal(signum, frame):
    # SystemExit unwinds the stack so the staging area is cleaned up
    raise SystemExit(128 + signum)


def main(argv=None):
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
    logger = logging.getLogger(__name__)

    config = parse_args(argv)
    signal.signal(signal.SIGTERM, _exit_on_signal)

    try:
        backup_manager = JenkinsBackupManager(config)
        backup_manager.run()
    except (BackupError, OSError) as e:
        logger.error(f"Jenkins backup failed: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
