"""Motion files: frontmatter parsing, inbox scanning and archive logic.

A motion file is markdown whose body is the debate topic. Optional YAML
frontmatter assigns roles::

    ---
    pro: claude
    con: grok
    judge: gemini
    ---
    Remote work should be the default for software teams.
"""

import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import frontmatter


@dataclass
class Motion:
    topic: str
    source: str
    pro: str | None = None
    con: str | None = None
    judge: str | None = None


def ensure_dirs(inbox_dir: Path, archive_dir: Path) -> None:
    """Create inbox and archive directories if they don't exist."""
    inbox_dir.mkdir(parents=True, exist_ok=True)
    archive_dir.mkdir(parents=True, exist_ok=True)


def scan_inbox(inbox_dir: Path) -> list[Path]:
    """Return all .md files in inbox_dir, sorted by mtime ascending (oldest first)."""
    files = list(inbox_dir.glob("*.md"))
    return sorted(files, key=lambda p: p.stat().st_mtime)


def parse_motion(file_path: Path) -> Motion:
    """Parse a motion file. Roles missing from the frontmatter are None."""
    post = frontmatter.load(str(file_path))
    metadata = dict(post.metadata)

    def _role(key: str) -> str | None:
        value = metadata.get(key)
        return str(value).strip() if value else None

    return Motion(
        topic=post.content.strip(),
        source=str(file_path),
        pro=_role("pro"),
        con=_role("con"),
        judge=_role("judge"),
    )


def archive_file(file_path: Path, archive_dir: Path, *, failed: bool = False) -> Path:
    """Move file to archive_dir with a timestamp prefix.

    Args:
        file_path: Source file to archive.
        archive_dir: Destination directory.
        failed: If True, prefix filename with "FAILED_".

    Returns:
        Path to the archived file.
    """
    timestamp = datetime.now().strftime("%Y-%m-%dT%H%M")
    prefix = "FAILED_" if failed else ""
    dest_name = f"{prefix}{timestamp}_{file_path.name}"
    dest = archive_dir / dest_name
    shutil.move(str(file_path), str(dest))
    return dest
