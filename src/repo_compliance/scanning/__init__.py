"""File inventory for extracted repository snapshots."""

from .inventory import categorize_file, is_security_relevant, list_candidate_files, select_for_depth
from .models import FileCategory, FileEntry

__all__ = [
    "FileCategory",
    "FileEntry",
    "categorize_file",
    "is_security_relevant",
    "list_candidate_files",
    "select_for_depth",
]
