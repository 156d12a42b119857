"""Data models for the file inventory taken during the Overview phase."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class FileCategory(Enum):
    """Coarse role of a file inside the repository."""

    SOURCE = "source"
    CONFIG = "config"
    DOCS = "docs"
    CI_CD = "ci_cd"
    IAC = "iac"
    TEST = "test"
    OTHER = "other"


@dataclass(frozen=True)
class FileEntry:
    """One inventoried file, addressed relative to the snapshot root."""

    relative_path: str  # POSIX separators
    file_name: str
    extension: str  # lower-case, "" when absent
    size: int
    language: Optional[str]
    category: FileCategory
    is_security_relevant: bool

    @property
    def lower_path(self) -> str:
        return self.relative_path.lower()

    def to_dict(self) -> dict:
        return {
            "relative_path": self.relative_path,
            "file_name": self.file_name,
            "extension": self.extension,
            "size": self.size,
            "language": self.language,
            "category": self.category.value,
            "is_security_relevant": self.is_security_relevant,
        }
