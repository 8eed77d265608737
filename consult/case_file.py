"""Case files (markdown + YAML frontmatter) and the inbox folder that holds them."""

import shutil
from datetime import datetime
from pathlib import Path

import frontmatter

from consult.models import ImageRecognition, PatientCase


def ensure_dirs(inbox_dir: Path, archive_dir: Path) -> None:
    """Create inbox and archive directories if they don't exist."""
    inbox_dir.mkdir(parents=True, exist_ok=True)
    archive_dir.mkdir(parents=True, exist_ok=True)


def scan_inbox(inbox_dir: Path) -> list[Path]:
    """Return all .md files in inbox_dir, sorted by mtime ascending (oldest first)."""
    files = list(inbox_dir.glob("*.md"))
    return sorted(files, key=lambda p: p.stat().st_mtime)


def _age(value: object) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_case_file(file_path: Path) -> tuple[PatientCase, dict]:
    """Parse a case file.

    The body is the current problem. Frontmatter keys name, gender, age and
    past_history fill the case; images is a list of {name, result} findings
    already produced by image recognition.

    Returns:
        (case, metadata) where metadata is the raw frontmatter dict, so
        callers can read run options such as doctors or turn_order.
    """
    post = frontmatter.load(str(file_path))
    meta = dict(post.metadata)

    images = [
        ImageRecognition(
            id=f"img-{idx}",
            name=str(item.get("name") or ""),
            result=str(item.get("result") or ""),
            status="success" if item.get("result") else "error",
            error="" if item.get("result") else "No recognition result",
        )
        for idx, item in enumerate(meta.get("images") or [])
        if isinstance(item, dict)
    ]

    case = PatientCase(
        name=str(meta.get("name") or "").strip(),
        gender=str(meta.get("gender") or "").strip(),
        age=_age(meta.get("age")),
        past_history=str(meta.get("past_history") or "").strip(),
        current_problem=post.content.strip(),
        image_recognitions=images,
    )
    return case, meta


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
