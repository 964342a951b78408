"""
Data models for signing tool resolution.
"""
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional


@dataclass
class ToolingStatus:
    """Result of resolving the external signing tools."""
    available: bool
    executables: Dict[str, str] = field(default_factory=dict)
    downloaded: bool = False
    error_message: Optional[str] = None

    @classmethod
    def available_result(cls, executables: Dict[str, str], downloaded: bool = False) -> 'ToolingStatus':
        """Create a status for resolved tooling."""
        return cls(available=True, executables=dict(executables), downloaded=downloaded)

    @classmethod
    def unavailable_result(cls, error_message: str) -> 'ToolingStatus':
        """Create a status for missing tooling."""
        return cls(available=False, error_message=error_message)

    def executable(self, name: str) -> str:
        """Path of a resolved executable, or its bare name to search ``PATH``."""
        return self.executables.get(name, name)


@dataclass
class DownloadedBinary:
    """A tool binary fetched into the binary directory."""
    name: str
    url: str
    path: Path
    size: int
    sha256: str
    fetched_at: Optional[datetime] = None

    def __post_init__(self):
        if self.fetched_at is None:
            self.fetched_at = datetime.now()
