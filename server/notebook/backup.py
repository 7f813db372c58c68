"""
Local backup of the last record set loaded from the store.

When the store cannot be reached the controller falls back to this copy.
The file is a best-effort cache: failures to read or write it are logged and
otherwise ignored.
"""

import logging
from pathlib import Path
from typing import List, Optional

from .errors import BackupError
from .models import ExperimentRecord
from .serialization import records_from_json, records_to_json

logger = logging.getLogger(__name__)


class LocalBackup:
    """JSON file cache of the notebook in the snake_case record shape."""

    def __init__(self, path: str):
        self.path = Path(path)

    def save(self, records: List[ExperimentRecord]) -> bool:
        """
        Overwrite the backup with ``records``.

        Returns:
            True if successful, False otherwise
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(records_to_json(records), encoding="utf-8")
            logger.debug(f"Backed up {len(records)} records to {self.path}")
            return True
        except OSError as e:
            logger.warning(f"Error writing local backup {self.path}: {str(e)}")
            return False

    def read(self) -> List[ExperimentRecord]:
        """
        Read the backup.

        Raises:
            BackupError: If the file is missing or cannot be parsed
        """
        try:
            return records_from_json(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise BackupError(f"Local backup {self.path} is unreadable: {str(e)}")

    def load(self) -> Optional[List[ExperimentRecord]]:
        """
        Read the backup, ignoring a missing or damaged file.

        Returns:
            The cached records, or None when there is no usable copy
        """
        if not self.path.exists():
            return None
        try:
            return self.read()
        except BackupError as e:
            logger.error(f"Failed to load records from backup: {e.message}")
            return None

