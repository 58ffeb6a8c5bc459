"""Print the text content of every stored screenshot.

This script walks the same per-project JSON files the server loads, using
`dal.screenshot_dal.ScreenshotDAL`, and prints the non-empty text fields of
each record (image payloads are left out). Files that cannot be parsed are
listed at the end.

Run: set the `DATA_DIR` environment variable (or rely on the default `data`
      folder) and run `python print_store.py`.
"""
from collections import defaultdict
from typing import Dict, List

from dotenv import load_dotenv

from dal.screenshot_dal import ScreenshotDAL
from models.screenshot_record import ScreenshotRecord
from utils.config import BridgeConfig

TEXT_FIELDS = ("prompt", "description", "annotations", "status", "source", "createdAt", "deliveredAt")


def _print_record(record: ScreenshotRecord) -> None:
    """Print all non-empty text fields for one record.

    Args:
        record: Record to print.
    """
    data = record.to_dict(include_image=False)
    entries = []
    for field in TEXT_FIELDS:
        value = data.get(field)
        if value is None:
            continue
        s = str(value).strip()
        if not s:
            continue
        entries.append(f"{field}={s!r}")
    if record.git and record.git.branch:
        entries.append(f"branch={record.git.branch!r}")
    print(f"  {record.id}: " + "; ".join(entries))


def main() -> None:
    """Load every record from DATA_DIR and print it grouped by project."""
    load_dotenv()
    dal = ScreenshotDAL(BridgeConfig.from_env().data_dir)
    records, skipped = dal.load_all()

    by_project: Dict[str, List[ScreenshotRecord]] = defaultdict(list)
    for record in records:
        by_project[record.project_id].append(record)

    for project_id in sorted(by_project):
        print(f"Project: {project_id}")
        for record in sorted(by_project[project_id], key=lambda r: r.created_at):
            _print_record(record)
        print()

    for problem in skipped:
        print(f"Skipped: {problem}")


if __name__ == "__main__":
    main()
