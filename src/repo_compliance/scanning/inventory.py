"""File inventory: list, categorise and flag the files of an extracted snapshot.

The inventory is the only place that walks the directory tree. Detectors
receive the resulting list and never recurse on their own.
"""

from __future__ import annotations

import fnmatch
import os
from pathlib import Path, PurePosixPath
from typing import Optional

from ..config import ScanConfig
from ..exceptions import DetectionError
from ..logging_config import get_logger
from .models import FileCategory, FileEntry

logger = get_logger(__name__)

LANGUAGE_BY_EXTENSION = {
    ".js": "JavaScript",
    ".jsx": "JavaScript",
    ".mjs": "JavaScript",
    ".cjs": "JavaScript",
    ".ts": "TypeScript",
    ".tsx": "TypeScript",
    ".py": "Python",
    ".java": "Java",
    ".go": "Go",
    ".rb": "Ruby",
    ".php": "PHP",
    ".c": "C",
    ".cpp": "C++",
    ".cs": "C#",
    ".rs": "Rust",
    ".kt": "Kotlin",
    ".swift": "Swift",
    ".sql": "SQL",
    ".sh": "Shell",
    ".bash": "Bash",
    ".ps1": "PowerShell",
    ".yaml": "YAML",
    ".yml": "YAML",
    ".json": "JSON",
    ".xml": "XML",
    ".md": "Markdown",
    ".tf": "Terraform",
}

SOURCE_EXTENSIONS = frozenset(
    {".js", ".jsx", ".mjs", ".cjs", ".ts", ".tsx", ".py", ".java", ".go", ".rb",
     ".php", ".c", ".cpp", ".cs", ".rs", ".kt", ".swift", ".scala", ".ex", ".exs"}
)

CONFIG_EXTENSIONS = frozenset({".yaml", ".yml", ".toml", ".ini", ".env", ".cfg", ".conf", ".properties"})

_SECURITY_PATH_HINTS = ("auth", "security", "crypto", "middleware", "jwt", "oauth", "encryption")
_SECURITY_NAME_HINTS = ("auth", "security", "encrypt", "permission", "role", "access", "session", "token")


def categorize_file(relative_path: str, file_name: str) -> FileCategory:
    """Categorise a file by path and name; first matching rule wins."""
    lower_path = relative_path.lower()
    lower_name = file_name.lower()

    if (
        ".github/workflows" in lower_path
        or ".gitlab-ci" in lower_path
        or lower_name == "jenkinsfile"
        or lower_name == ".travis.yml"
        or lower_name == "circle.yml"
        or ".circleci/" in lower_path
        or lower_name in ("azure-pipelines.yml", "azure-pipelines.yaml")
    ):
        return FileCategory.CI_CD

    if (
        "terraform" in lower_path
        or "cloudformation" in lower_path
        or "kubernetes" in lower_path
        or "k8s" in lower_path
        or lower_name.endswith(".tf")
        or lower_name == "dockerfile"
        or "docker-compose" in lower_name
    ):
        return FileCategory.IAC

    parts = PurePosixPath(lower_path).parts[:-1]
    if (
        any(p in ("test", "tests", "__tests__", "spec") for p in parts)
        or ".test." in lower_name
        or ".spec." in lower_name
        or lower_name.startswith("test_")
        or lower_name.endswith("_test.py")
        or lower_name.endswith("_test.go")
    ):
        return FileCategory.TEST

    if (
        lower_name in ("readme.md", "readme", "changelog.md", "license", "contributing.md", "security.md")
        or "docs" in parts
    ):
        return FileCategory.DOCS

    if lower_name.endswith(".json") and (
        lower_name == "package.json" or "tsconfig" in lower_name or "config" in lower_name
    ):
        return FileCategory.CONFIG

    ext = os.path.splitext(lower_name)[1]
    if (
        ext in CONFIG_EXTENSIONS
        or lower_name.startswith(".env")
        or lower_name in (".gitignore", ".dockerignore")
    ):
        return FileCategory.CONFIG

    if ext in SOURCE_EXTENSIONS:
        return FileCategory.SOURCE

    return FileCategory.OTHER


def is_security_relevant(relative_path: str, file_name: str, category: FileCategory) -> bool:
    """Whether the file deserves a content scan at ``security_relevant`` depth."""
    lower_path = relative_path.lower()
    lower_name = file_name.lower()

    if any(hint in lower_path for hint in _SECURITY_PATH_HINTS):
        return True
    if any(hint in lower_name for hint in _SECURITY_NAME_HINTS):
        return True
    return category in (FileCategory.CI_CD, FileCategory.IAC)


def _matches_any(relative_path: str, patterns: list[str]) -> bool:
    return any(
        fnmatch.fnmatch(relative_path, pattern) or fnmatch.fnmatch(relative_path, f"*/{pattern}")
        for pattern in patterns
    )


def _is_hidden(relative_path: str) -> bool:
    return any(part.startswith(".") for part in PurePosixPath(relative_path).parts)


def list_candidate_files(extracted_path: str, config: Optional[ScanConfig] = None) -> list[FileEntry]:
    """Inventory every candidate file under *extracted_path*.

    Args:
        extracted_path: Root of the extracted snapshot
        config: Scan configuration (defaults apply when omitted)

    Returns:
        FileEntry list sorted by relative path

    Raises:
        DetectionError: If the root does not exist or is not a directory
    """
    config = config or ScanConfig()
    root = Path(extracted_path)
    if not root.is_dir():
        raise DetectionError(
            f"Extracted path is not a directory: {extracted_path}",
            details={"extracted_path": str(extracted_path)},
        )
    root = root.resolve()

    entries: list[FileEntry] = []
    truncated = False

    for dirpath, dirnames, filenames in os.walk(root, followlinks=config.follow_symlinks):
        rel_dir = Path(dirpath).relative_to(root).as_posix()
        rel_dir = "" if rel_dir == "." else rel_dir

        # Prune excluded directories in place so os.walk never descends.
        kept = []
        for d in sorted(dirnames):
            rel = f"{rel_dir}/{d}" if rel_dir else d
            if _matches_any(f"{rel}/x", config.exclude_patterns):
                continue
            if (
                not config.allow_hidden_files
                and d.startswith(".")
                and not _matches_any(f"{rel}/x", config.include_hidden_patterns)
            ):
                continue
            kept.append(d)
        dirnames[:] = kept

        for name in sorted(filenames):
            rel = f"{rel_dir}/{name}" if rel_dir else name
            full = Path(dirpath) / name

            if full.is_symlink() and not config.follow_symlinks:
                continue
            if _matches_any(rel, config.exclude_patterns):
                continue
            if (
                not config.allow_hidden_files
                and _is_hidden(rel)
                and not _matches_any(rel, config.include_hidden_patterns)
            ):
                continue

            try:
                resolved = full.resolve()
                resolved.relative_to(root)
                size = resolved.stat().st_size
            except (OSError, ValueError):
                # Unresolvable or escapes the snapshot root
                logger.debug("Dropping unsafe path %s", rel)
                continue

            ext = os.path.splitext(name)[1].lower()
            category = categorize_file(rel, name)
            entries.append(
                FileEntry(
                    relative_path=rel,
                    file_name=name,
                    extension=ext,
                    size=size,
                    language=LANGUAGE_BY_EXTENSION.get(ext),
                    category=category,
                    is_security_relevant=is_security_relevant(rel, name, category),
                )
            )
            if len(entries) >= config.max_files:
                truncated = True
                break
        if truncated:
            break

    if truncated:
        logger.warning("File inventory truncated at max_files=%d", config.max_files)

    entries.sort(key=lambda e: e.relative_path)
    logger.debug("Inventoried %d files under %s", len(entries), root)
    return entries


def select_for_depth(files: list[FileEntry], depth: str) -> list[FileEntry]:
    """Restrict the inventory to the files scanned at the given analysis depth.

    ``structure_only`` scans no contents, ``security_relevant`` keeps
    security-relevant, source and config files (tests excluded), ``full``
    keeps everything.
    """
    if depth == "structure_only":
        return []
    if depth == "full":
        return list(files)
    return [
        f
        for f in files
        if f.category is not FileCategory.TEST
        and (
            f.is_security_relevant
            or f.category in (FileCategory.SOURCE, FileCategory.CONFIG, FileCategory.CI_CD)
        )
    ]
