"""
Environment preparation: the output directories every later stage writes to.
"""
import logging
from pathlib import Path
from typing import List

from ..models.config import Config
from ..models.errors import EnvironmentSetupError


logger = logging.getLogger(__name__)


def ensure_directory(path) -> bool:
    """
    Create ``path`` and its parents if absent.

    Args:
        path: Directory to create

    Returns:
        True if the directory was created, False if it already existed

    Raises:
        EnvironmentSetupError: If the path is not a directory or cannot be created
    """
    directory = Path(path)

    if directory.is_dir():
        logger.debug(f"{directory} is already present. Skipping")
        return False

    if directory.exists():
        raise EnvironmentSetupError(f"{directory} exists and is not a directory")

    logger.debug(f"{directory} is not present. Creating")
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise EnvironmentSetupError(f"Failed to create directory {directory}: {e}") from e

    return True


class EnvironmentService:
    """Ensures the binary, PKI and request-profile directories exist."""

    def __init__(self, config: Config):
        self.config = config
        self.logger = logging.getLogger(__name__)

    @property
    def directories(self) -> List[Path]:
        return [
            Path(self.config.bin_dir),
            Path(self.config.pki_dir),
            Path(self.config.pki_profile_dir),
        ]

    def setup_environment(self) -> List[Path]:
        """
        Ensure all configured directories exist.

        Returns:
            The directories that had to be created
        """
        created = [d for d in self.directories if ensure_directory(d)]
        if created:
            self.logger.info(f"Created directories: {', '.join(str(d) for d in created)}")
        return created
