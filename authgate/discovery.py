"""
AuthGate — Configuration File Discovery
=========================================

What:  Locates the database registry document across an ordered set of
       candidate filesystem locations.
Who:   Called by ConnectionRegistry.initialize() and by the Alembic env.

Search order (first regular file wins):
    1. the filename as given (relative to the current working directory)
    2. one directory up          ../<filename>
    3. two directories up        ../../<filename>
    4. the deployment root       <deploy_root>/<filename>
    5. cwd's parent, absolute    <abs(cwd).parent>/<filename>

On total failure a ConfigNotFoundError lists every path that was tried.
"""

import logging
from pathlib import Path
from typing import List, Optional, Union

from authgate.config import Settings, settings as default_settings
from authgate.exceptions import ConfigNotFoundError

logger = logging.getLogger(__name__)


class ConfigDiscovery:
    """Resolves a configuration filename to an existing file path."""

    def __init__(self, deploy_root: Optional[Union[str, Path]] = None):
        self.deploy_root = Path(deploy_root if deploy_root is not None else default_settings.deploy_root)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ConfigDiscovery":
        return cls(deploy_root=settings.deploy_root)

    def candidates(self, filename: Union[str, Path]) -> List[Path]:
        """Every location tried for `filename`, in priority order."""
        name = Path(filename)
        return [
            name,
            Path("..") / name,
            Path("..") / ".." / name,
            self.deploy_root / name,
            Path.cwd().resolve().parent / name,
        ]

    def locate(self, filename: Union[str, Path]) -> Path:
        """
        Returns the first candidate that exists as a regular file.

        A candidate that cannot be inspected (e.g. PermissionError on a
        parent directory) counts as absent.

        Raises:
            ConfigNotFoundError: no candidate exists; `attempted` holds them all.
        """
        attempted = []
        for candidate in self.candidates(filename):
            attempted.append(str(candidate))
            try:
                found = candidate.is_file()
            except OSError as e:
                logger.warning("Cannot inspect %s (%s); skipping", candidate, type(e).__name__)
                continue
            if found:
                logger.info("Found configuration file at: %s", candidate)
                return candidate

        logger.error("Could not find configuration file '%s'. Tried:", filename)
        for path in attempted:
            logger.error("  - %s", path)
        logger.error("Current directory: %s", Path.cwd())
        raise ConfigNotFoundError(str(filename), attempted)


def locate(filename: Union[str, Path], settings: Optional[Settings] = None) -> Path:
    """Module-level shortcut for `ConfigDiscovery(...).locate(filename)`."""
    discovery = ConfigDiscovery.from_settings(settings or default_settings)
    return discovery.locate(filename)
