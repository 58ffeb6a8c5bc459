"""Project-partitioned screenshot repository.

`ScreenshotStore` keeps every record in memory and mirrors each mutation to
its JSON file through `dal.screenshot_dal.ScreenshotDAL` before returning.
The disk write happens first, so a failed write leaves the in-memory state
untouched and the exception reaches the caller.

Mutations never await anything, so under a single event loop they run to
completion in call order and need no locking.
"""

from __future__ import annotations

import dataclasses
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from dal.screenshot_dal import ScreenshotDAL
from models.screenshot_record import (
    SOURCE_AGENT,
    SOURCE_USER,
    SOURCES,
    STATUS_DELIVERED,
    STATUS_PENDING,
    STATUSES,
    GitContext,
    ScreenshotRecord,
)
from utils.timestamps import parse_timestamp, utc_timestamp

LOGGER = logging.getLogger(__name__)

SourceContextProvider = Callable[[], Optional[GitContext]]

_CAPTURE_CONTEXT: Any = object()


@dataclass(frozen=True)
class ScreenshotFilter:
    """Conjunctive filter over one project's screenshots.

    ``query`` is matched as a case-insensitive substring of the prompt and of
    the description; ``since`` and ``until`` are inclusive bounds.
    """

    branch: Optional[str] = None
    commit: Optional[str] = None
    since: Optional[str] = None
    until: Optional[str] = None
    status: Optional[str] = None
    query: Optional[str] = None

    def is_empty(self) -> bool:
        return not any((self.branch, self.commit, self.since, self.until, self.status, self.query))


class ScreenshotStore:
    """In-memory table of screenshot records backed by per-record files.

    Args:
        dal: Persistence port used for write-through and startup loading.
        source_context: Optional callable returning the source-control tag
            attached to new records.
    """

    def __init__(self, dal: ScreenshotDAL, source_context: Optional[SourceContextProvider] = None) -> None:
        self._dal = dal
        self._source_context = source_context
        self._screenshots: Dict[str, ScreenshotRecord] = {}
        self._known_projects: Set[str] = set()

    @property
    def dal(self) -> ScreenshotDAL:
        return self._dal

    def __len__(self) -> int:
        return len(self._screenshots)

    # -- lifecycle ---------------------------------------------------------

    def load_from_disk(self) -> int:
        """Migrate legacy flat files, then load every per-project record.

        Malformed files are logged and skipped; they never abort startup.

        Returns:
            Number of records loaded.
        """
        self._dal.migrate_legacy()
        records, skipped = self._dal.load_all()
        for problem in skipped:
            LOGGER.warning("Skipping malformed screenshot file %s", problem)
        records.sort(key=lambda r: r.created_at)
        for record in records:
            self._screenshots[record.id] = record
            self._known_projects.add(record.project_id)
        LOGGER.info(
            "Loaded %d screenshots from disk across %d project(s) (%d skipped)",
            len(records),
            len(self._known_projects),
            len(skipped),
        )
        return len(records)

    # -- projects ----------------------------------------------------------

    def is_new_project(self, project_id: str) -> bool:
        """Return True if no record or session has been seen for `project_id`.

        Must be called before `create` when the caller wants a one-time
        "project created" signal; `create` registers the project.
        """
        return project_id not in self._known_projects

    def register_project(self, project_id: str) -> bool:
        """Mark a project as known. Returns True if it was not known before."""
        if not project_id:
            raise ValueError("Project id must not be empty")
        if project_id in self._known_projects:
            return False
        self._known_projects.add(project_id)
        return True

    def list_projects(self) -> List[str]:
        return sorted(self._known_projects)

    def source_context(self) -> Optional[GitContext]:
        """Return the current source-control tag; may block on git subprocesses."""
        return self._source_context() if self._source_context else None

    # -- mutations ---------------------------------------------------------

    def create(
        self,
        project_id: str,
        image_base64: str,
        mime_type: str,
        prompt: str = "",
        annotations: Optional[str] = None,
        source: str = SOURCE_USER,
        git: Any = _CAPTURE_CONTEXT,
    ) -> ScreenshotRecord:
        """Create, persist and return a new record.

        Agent-sourced records start delivered since nobody needs to pick
        them up. `git` is asked of the source-context provider unless the
        caller passes an already resolved `GitContext` (or None).

        Raises:
            ValueError: If the project id is empty or the source is unknown.
            OSError: If the record cannot be written; nothing is stored then.
        """
        if not project_id:
            raise ValueError("Project id must not be empty")
        if source not in SOURCES:
            raise ValueError(f"Unknown screenshot source {source!r}")
        if not image_base64:
            raise ValueError("Image payload is required.")

        now = utc_timestamp()
        is_agent = source == SOURCE_AGENT
        record = ScreenshotRecord(
            id=str(uuid.uuid4()),
            project_id=project_id,
            prompt=prompt or "",
            image_base64=image_base64,
            mime_type=mime_type,
            status=STATUS_DELIVERED if is_agent else STATUS_PENDING,
            source=source,
            created_at=now,
            delivered_at=now if is_agent else None,
            annotations=annotations or None,
            git=self.source_context() if git is _CAPTURE_CONTEXT else git,
        )
        self._dal.save(record)
        self._screenshots[record.id] = record
        self._known_projects.add(project_id)
        return record

    def mark_delivered(self, screenshot_id: str) -> None:
        """Transition a record to delivered. Unknown ids and repeat calls are no-ops.

        Raises:
            OSError: If the updated record cannot be written.
        """
        record = self._screenshots.get(screenshot_id)
        if record is None or record.status == STATUS_DELIVERED:
            return
        self._commit(dataclasses.replace(record, status=STATUS_DELIVERED, delivered_at=utc_timestamp()))

    def set_description(self, screenshot_id: str, description: str) -> bool:
        """Overwrite the cached description. Returns False if the id is unknown.

        Raises:
            OSError: If the updated record cannot be written.
        """
        record = self._screenshots.get(screenshot_id)
        if record is None:
            return False
        self._commit(dataclasses.replace(record, description=description))
        return True

    def delete(self, screenshot_id: str) -> bool:
        """Remove a record from disk and memory. Returns False if the id is unknown."""
        record = self._screenshots.get(screenshot_id)
        if record is None:
            return False
        self._dal.remove(record.project_id, record.id)
        del self._screenshots[screenshot_id]
        return True

    def clear(self, project_id: str) -> int:
        """Remove every record of `project_id` and return how many were removed.

        The project stays known, so it keeps showing in `list_projects`.
        """
        doomed = [r for r in self._screenshots.values() if r.project_id == project_id]
        for record in doomed:
            self._dal.remove(record.project_id, record.id)
            del self._screenshots[record.id]
        self._dal.remove_project(project_id)
        return len(doomed)

    def _commit(self, record: ScreenshotRecord) -> None:
        self._dal.save(record)
        self._screenshots[record.id] = record

    # -- queries -----------------------------------------------------------

    def get(self, screenshot_id: str) -> Optional[ScreenshotRecord]:
        return self._screenshots.get(screenshot_id)

    def get_for_project(self, project_id: str, screenshot_id: str) -> Optional[ScreenshotRecord]:
        """Like `get`, but records of other projects read as missing."""
        record = self._screenshots.get(screenshot_id)
        if record is None or record.project_id != project_id:
            return None
        return record

    def list(
        self,
        project_id: str,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Return a project's records newest first, without image payloads."""
        return self._page(self._newest_first(self._in_project(project_id)), limit, offset)

    def count(self, project_id: str) -> int:
        return sum(1 for _ in self._in_project(project_id))

    def list_pending(self, project_id: str) -> List[ScreenshotRecord]:
        """Return user-sourced pending records oldest first (full records, payload included)."""
        return [
            r
            for r in self._in_project(project_id)
            if r.status == STATUS_PENDING and r.source == SOURCE_USER
        ]

    def filter(
        self,
        project_id: str,
        criteria: ScreenshotFilter,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Return records matching every given criterion, newest first, without payloads.

        Raises:
            ValueError: If `since`/`until` are not ISO timestamps or `status` is unknown.
        """
        matches = self._matching(project_id, criteria)
        return self._page(self._newest_first(matches), limit, offset)

    def count_filtered(self, project_id: str, criteria: ScreenshotFilter) -> int:
        return len(self._matching(project_id, criteria))

    def _in_project(self, project_id: str) -> Iterable[ScreenshotRecord]:
        # Insertion order is creation order, so ties on created_at stay stable.
        ordered = sorted(self._screenshots.values(), key=lambda r: r.created_at)
        return [r for r in ordered if r.project_id == project_id]

    def _matching(self, project_id: str, criteria: ScreenshotFilter) -> List[ScreenshotRecord]:
        if criteria.status and criteria.status not in STATUSES:
            raise ValueError(f"Unknown status filter {criteria.status!r}")
        since = parse_timestamp(criteria.since) if criteria.since else None
        until = parse_timestamp(criteria.until) if criteria.until else None
        needle = criteria.query.lower() if criteria.query else None

        items = []
        for record in self._in_project(project_id):
            git = record.git
            if criteria.branch and (git is None or git.branch != criteria.branch):
                continue
            if criteria.commit and (git is None or criteria.commit not in (git.commit, git.commit_short)):
                continue
            if since or until:
                created = parse_timestamp(record.created_at)
                if since and created < since:
                    continue
                if until and created > until:
                    continue
            if criteria.status and record.status != criteria.status:
                continue
            if needle:
                haystacks = (record.prompt or "", record.description or "")
                if not any(needle in text.lower() for text in haystacks):
                    continue
            items.append(record)
        return items

    @staticmethod
    def _newest_first(records: Iterable[ScreenshotRecord]) -> List[ScreenshotRecord]:
        return list(records)[::-1]

    @staticmethod
    def _page(
        records: List[ScreenshotRecord],
        limit: Optional[int],
        offset: Optional[int],
    ) -> List[Dict[str, Any]]:
        start = max(offset or 0, 0)
        end = start + max(limit, 0) if limit is not None else None
        return [r.to_dict(include_image=False) for r in records[start:end]]
