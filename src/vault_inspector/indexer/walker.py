"""File walker for discovering notes in a vault."""

import hashlib
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from pathlib import Path

DEFAULT_EXCLUDE_PATTERNS = (".obsidian/", ".git/", ".trash/")

FINGERPRINT_MTIME = "mtime"
FINGERPRINT_CONTENT = "content"


@dataclass
class FileInfo:
    """Information about a discovered note file."""

    path: Path  # Absolute path
    relative_path: str  # Relative to the vault root, POSIX separators
    mtime: int  # Whole seconds since the epoch
    size: int


def compute_hash(content: bytes) -> str:
    """Compute SHA-256 hash of content."""
    return hashlib.sha256(content).hexdigest()


def compute_fingerprint(file_info: FileInfo, mode: str = FINGERPRINT_MTIME) -> str:
    """
    Change fingerprint for a file.

    The default is the cheap "<size hex>:<mtime>" proxy, which treats two
    files with the same size and mtime as identical. In "content" mode the
    file bytes are hashed instead.
    """
    if mode == FINGERPRINT_CONTENT:
        return compute_hash(file_info.path.read_bytes())
    return f"{file_info.size:x}:{file_info.mtime}"


def is_excluded(relative_path: str, exclude_patterns: Sequence[str]) -> bool:
    """True if any pattern occurs as a substring of the relative path."""
    return any(pattern in relative_path for pattern in exclude_patterns)


def walk_vault(
    vault_root: Path,
    exclude_patterns: Sequence[str] = DEFAULT_EXCLUDE_PATTERNS,
) -> Iterator[FileInfo]:
    """
    Walk the vault recursively and yield FileInfo for each .md file.

    Files are yielded sorted by relative path. Exclusion is a plain substring
    match of each pattern against the POSIX relative path.

    Raises:
        FileNotFoundError: The vault root does not exist.
        NotADirectoryError: The vault root is not a directory.
    """
    if not vault_root.exists():
        raise FileNotFoundError(f"Vault not found: {vault_root}")
    if not vault_root.is_dir():
        raise NotADirectoryError(f"Vault is not a directory: {vault_root}")

    for file_path in sorted(vault_root.rglob("*.md")):
        if not file_path.is_file():
            continue

        relative_path = file_path.relative_to(vault_root).as_posix()
        if is_excluded(relative_path, exclude_patterns):
            continue

        stat = file_path.stat()
        yield FileInfo(
            path=file_path,
            relative_path=relative_path,
            mtime=int(stat.st_mtime),
            size=stat.st_size,
        )
