"""Unified-diff patch application for vault files.

Each changeset file item carries exactly one hunk. Hunks are matched at
their declared offset first, then anywhere within a window of
``HUNK_SEARCH_WINDOW`` lines, so small drift from concurrent edits is
tolerated without touching unrelated text.

Multi-file application is all-or-nothing: every target is read and patched
in memory before the first write, and a failed write rolls back the files
already written.
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
import tempfile
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Callable, Iterable, Literal

from pydantic import ValidationError as PydanticValidationError

from .constants import HUNK_SEARCH_WINDOW
from .errors import ConflictError, NotFoundError, ValidationError
from .models import ChangesetItem, FilePatchPayload

logger = logging.getLogger(__name__)

HUNK_HEADER = re.compile(r"^@@\s+-(\d+)(?:,(\d+))?\s+\+(\d+)(?:,(\d+))?\s+@@")
IGNORED_PREFIXES = ("--- ", "+++ ", "diff --git ", "\\ No newline at end of file")
LINE_SPLIT = re.compile(r"\r?\n")


@dataclass
class HunkLine:
    prefix: Literal[" ", "+", "-"]
    text: str


@dataclass
class Hunk:
    old_start: int
    old_lines: int
    new_start: int
    new_lines: int
    lines: list[HunkLine] = field(default_factory=list)

    @property
    def expected(self) -> list[str]:
        """Pre-image: context and deleted lines."""
        return [line.text for line in self.lines if line.prefix != "+"]

    @property
    def replacement(self) -> list[str]:
        """Post-image: context and added lines."""
        return [line.text for line in self.lines if line.prefix != "-"]

    @property
    def creates_file(self) -> bool:
        return self.old_start == 0 and self.old_lines == 0


@dataclass
class VaultFileUpdate:
    path: str
    content: str
    content_hash: str


@dataclass
class FilePatchResult:
    applied_item_ids: list[str]
    vault_file_updates: list[VaultFileUpdate]
    rollback: Callable[[], None]


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def parse_unified_diff(unified_diff: str) -> list[Hunk]:
    """Parse unified-diff text into hunks.

    File headers, ``diff --git`` lines and no-newline markers are ignored,
    as is anything before the first hunk header. Inside a hunk every line
    must start with a space, ``+`` or ``-``.
    """
    hunks: list[Hunk] = []
    current: Hunk | None = None

    for line in LINE_SPLIT.split(unified_diff):
        if not line:
            continue
        if line.startswith(IGNORED_PREFIXES[:3]):
            continue

        header = HUNK_HEADER.match(line)
        if header:
            old_start, old_lines, new_start, new_lines = header.groups()
            current = Hunk(
                old_start=int(old_start),
                old_lines=int(old_lines if old_lines is not None else 1),
                new_start=int(new_start),
                new_lines=int(new_lines if new_lines is not None else 1),
            )
            hunks.append(current)
            continue

        if current is None:
            continue
        if line.startswith(IGNORED_PREFIXES[3]):
            continue

        prefix = line[0]
        if prefix not in (" ", "+", "-"):
            raise ValidationError(f"Invalid diff line prefix: {prefix!r}", line=line)
        current.lines.append(HunkLine(prefix=prefix, text=line[1:]))

    return hunks


def resolve_vault_path(vault_root: Path, file_path: str) -> Path:
    """Resolve ``file_path`` under ``vault_root``, refusing anything that escapes it."""
    if "\x00" in file_path:
        raise ValidationError("Invalid file path", file_path=file_path)
    if os.path.isabs(file_path) or PurePosixPath(file_path).is_absolute():
        raise ValidationError(f"Absolute file paths are not allowed: {file_path}", file_path=file_path)

    root = Path(vault_root).resolve()
    target = (root / file_path).resolve()
    if target == root or root not in target.parents:
        raise ValidationError(f"Invalid vault file path: {file_path}", file_path=file_path)
    return target


def _matches_at(lines: list[str], start: int, expected: list[str]) -> bool:
    if start < 0 or start + len(expected) > len(lines):
        return False
    return lines[start:start + len(expected)] == expected


def _find_hunk_start(lines: list[str], expected: list[str], preferred: int) -> int:
    if _matches_at(lines, preferred, expected):
        return preferred

    low = max(0, preferred - HUNK_SEARCH_WINDOW)
    high = min(len(lines) - len(expected), preferred + HUNK_SEARCH_WINDOW)
    for start in range(low, high + 1):
        if _matches_at(lines, start, expected):
            logger.debug(f"Hunk matched at line {start + 1} (declared {preferred + 1})")
            return start

    raise ConflictError(
        "Hunk context did not match the target file",
        preferred_line=preferred + 1,
        expected=expected,
    )


def apply_hunks(content: str, hunks: Iterable[Hunk]) -> str:
    """Apply hunks, in order, to text content.

    CRLF line endings are normalised to LF. Each hunk's declared offset is
    shifted by the line-count drift of the hunks before it.
    """
    lines = LINE_SPLIT.split(content)
    offset = 0

    for hunk in hunks:
        expected = hunk.expected
        replacement = hunk.replacement
        # A pure insertion's old_start names the line it follows
        declared = hunk.old_start if hunk.old_lines == 0 else hunk.old_start - 1
        start = _find_hunk_start(lines, expected, declared + offset)
        lines[start:start + len(expected)] = replacement
        offset += len(replacement) - len(expected)

    return "\n".join(lines)


def _coerce_payload(item: ChangesetItem) -> FilePatchPayload:
    payload = item.payload
    if isinstance(payload, dict):
        try:
            payload = FilePatchPayload.model_validate(payload)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid file patch payload for item {item.id}: {e}", item_id=item.id) from e
    if not isinstance(payload, FilePatchPayload):
        raise ValidationError(f"Item {item.id} is not a file patch", item_id=item.id)
    return payload


def _write_atomic(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


def apply_file_patches(vault_root: Path, items: Iterable[ChangesetItem]) -> FilePatchResult:
    """Apply accepted file-patch items to the vault.

    Items targeting the same file are applied in ascending ``old_start``
    order. Raises before any write on a parse error, unsafe path, missing
    file or unmatched hunk. If a write fails, files already written are
    restored and the original error is re-raised.

    Returns:
        FilePatchResult whose ``rollback`` restores every written file
        (deleting files the patch created) for callers that must undo a
        wider transaction later.
    """
    items = list(items)
    root = Path(vault_root)

    by_file: dict[str, list[tuple[str, Hunk]]] = {}
    targets: dict[str, Path] = {}
    for item in items:
        payload = _coerce_payload(item)
        hunks = parse_unified_diff(payload.unified_diff)
        if len(hunks) != 1:
            raise ValidationError(
                f"File patch item {item.id} must contain exactly one hunk",
                item_id=item.id,
                hunk_count=len(hunks),
            )
        target = resolve_vault_path(root, payload.file_path)
        rel_path = target.relative_to(root.resolve()).as_posix()
        targets[rel_path] = target
        by_file.setdefault(rel_path, []).append((item.id, hunks[0]))

    # Snapshot and compute everything before the first write
    originals: dict[str, bytes | None] = {}
    computed: dict[str, str] = {}
    for rel_path, entries in by_file.items():
        target = targets[rel_path]
        ordered = sorted(entries, key=lambda entry: entry[1].old_start)
        if target.is_file():
            original = target.read_bytes()
            text = original.decode("utf-8")
        elif all(hunk.creates_file for _, hunk in ordered):
            original = None
            text = ""
        else:
            raise NotFoundError(f"Vault file not found: {rel_path}", file_path=rel_path)
        originals[rel_path] = original
        computed[rel_path] = apply_hunks(text.replace("\r\n", "\n"), [h for _, h in ordered])

    written: list[str] = []

    def rollback() -> None:
        for rel_path in reversed(written):
            target = targets[rel_path]
            before = originals[rel_path]
            try:
                if before is None:
                    target.unlink(missing_ok=True)
                else:
                    _write_atomic(target, before)
            except OSError as e:
                logger.warning(f"Rollback of {rel_path} failed: {e}")
        written.clear()

    try:
        for rel_path, content in computed.items():
            _write_atomic(targets[rel_path], content.encode("utf-8"))
            written.append(rel_path)
    except BaseException:
        rollback()
        raise

    updates = [
        VaultFileUpdate(path=rel_path, content=content, content_hash=content_hash(content))
        for rel_path, content in computed.items()
    ]
    return FilePatchResult(
        applied_item_ids=[item.id for item in items],
        vault_file_updates=updates,
        rollback=rollback,
    )
