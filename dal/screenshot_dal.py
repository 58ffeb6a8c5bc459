"""File-backed data access layer for screenshot records.

Every record lives in its own JSON file under a per-project directory:

    <root>/<encoded project id>/<record id>.json

The project directory name is the percent-encoded project id, so any project
string maps to exactly one directory and back. Files written by older
versions sit directly under ``<root>`` and are moved into the ``default``
project by `ScreenshotDAL.migrate_legacy`.
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Dict, List, Tuple
from urllib.parse import quote, unquote

from models.screenshot_record import DEFAULT_PROJECT, ScreenshotRecord

LOGGER = logging.getLogger(__name__)

_RECORD_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")


class MalformedRecordError(ValueError):
    """Raised for an on-disk file that cannot be turned into a record."""

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class ScreenshotDAL:
    """Data access layer for screenshot JSON files.

    All methods are synchronous: each call reads or writes a single small
    file, and callers rely on a write having finished before they return.
    """

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def ensure_root(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def encode_project(project_id: str) -> str:
        """Return the directory name used for `project_id`."""
        if not project_id:
            raise ValueError("Project id must not be empty")
        name = quote(project_id, safe="")
        # Leading dots would produce hidden or relative directory names.
        stripped = name.lstrip(".")
        return "%2E" * (len(name) - len(stripped)) + stripped

    @staticmethod
    def decode_project(dir_name: str) -> str:
        return unquote(dir_name)

    @staticmethod
    def validate_record_id(record_id: str) -> str:
        if not isinstance(record_id, str) or not _RECORD_ID_RE.match(record_id):
            raise ValueError(f"Record id {record_id!r} is not a safe file name")
        return record_id

    def project_dir(self, project_id: str) -> Path:
        return self.root / self.encode_project(project_id)

    def record_path(self, project_id: str, record_id: str) -> Path:
        return self.project_dir(project_id) / f"{self.validate_record_id(record_id)}.json"

    def save(self, record: ScreenshotRecord) -> Path:
        """Write the full record (image payload included) and return its path.

        The JSON is written to a sibling temp file and moved into place, so a
        reader never observes a partially written record.

        Raises:
            OSError: If the file cannot be written.
        """
        path = self.record_path(record.project_id, record.id)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            tmp_path.write_text(json.dumps(record.to_dict()), encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise
        return path

    def remove(self, project_id: str, record_id: str) -> bool:
        """Delete one record file. Returns True if a file was removed."""
        path = self.record_path(project_id, record_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    def remove_project(self, project_id: str) -> int:
        """Delete every record file of a project and its directory if it ends up empty."""
        directory = self.project_dir(project_id)
        if not directory.is_dir():
            return 0
        removed = 0
        for path in directory.glob("*.json"):
            path.unlink(missing_ok=True)
            removed += 1
        try:
            directory.rmdir()
        except OSError:
            LOGGER.debug("Project directory %s not empty after clear; leaving it", directory)
        return removed

    def load_all(self) -> Tuple[List[ScreenshotRecord], List[MalformedRecordError]]:
        """Read every per-project record file.

        Returns:
            A tuple ``(records, skipped)``. Files that fail to parse, or whose
            location does not match their ``(projectId, id)``, or whose id was
            already loaded from another project, are reported in ``skipped``
            instead of raising.
        """
        self.ensure_root()
        records: List[ScreenshotRecord] = []
        skipped: List[MalformedRecordError] = []
        seen: Dict[str, Path] = {}
        for directory in sorted(p for p in self.root.iterdir() if p.is_dir()):
            project_id = self.decode_project(directory.name)
            for path in sorted(directory.glob("*.json")):
                try:
                    record = self._read(path)
                    if record.project_id != project_id:
                        raise MalformedRecordError(
                            path, f"projectId {record.project_id!r} does not match directory {project_id!r}"
                        )
                    if path.stem != record.id:
                        raise MalformedRecordError(path, f"id {record.id!r} does not match file name")
                    if record.id in seen:
                        raise MalformedRecordError(path, f"id {record.id!r} already loaded from {seen[record.id]}")
                except MalformedRecordError as exc:
                    skipped.append(exc)
                    continue
                seen[record.id] = path
                records.append(record)
        return records, skipped

    def migrate_legacy(self) -> int:
        """Move flat ``<root>/*.json`` files into the ``default`` project.

        Each file is rewritten with ``projectId = "default"`` under
        ``<root>/default/`` and the flat file is deleted only after the new
        file is in place. Files that cannot be parsed stay where they are.
        Running the migration again finds nothing to do.

        Returns:
            Number of files migrated.
        """
        self.ensure_root()
        migrated = 0
        for path in sorted(self.root.glob("*.json")):
            if not path.is_file():
                continue
            try:
                data = self._read_json(path)
                data["projectId"] = DEFAULT_PROJECT
                record = ScreenshotRecord.from_dict(data)
                self.validate_record_id(record.id)
            except (MalformedRecordError, ValueError) as exc:
                LOGGER.warning("Skipping legacy screenshot file %s: %s", path, exc)
                continue
            self.save(record)
            path.unlink()
            migrated += 1
        if migrated:
            LOGGER.info("Migrated %d legacy screenshot(s) into project %r", migrated, DEFAULT_PROJECT)
        return migrated

    def _read_json(self, path: Path) -> dict:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise MalformedRecordError(path, f"unreadable JSON ({exc})") from exc
        if not isinstance(data, dict):
            raise MalformedRecordError(path, "top-level JSON value is not an object")
        return data

    def _read(self, path: Path) -> ScreenshotRecord:
        data = self._read_json(path)
        try:
            return ScreenshotRecord.from_dict(data)
        except ValueError as exc:
            raise MalformedRecordError(path, str(exc)) from exc
