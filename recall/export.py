"""CSV Export Module for Recall.

Serializes search results as CSV text with the header
``ID,Timestamp,App,Title,Tags``. Missing tags are written as empty strings.

Example:
    >>> from recall.export import export_csv
    >>> text = export_csv(engine, "yesterday")
    >>> path = write_csv(text, Path("~/Downloads").expanduser())
"""

from pathlib import Path
from datetime import datetime
import csv
import io
import logging
from typing import Iterable, TYPE_CHECKING

from .storage import Event

if TYPE_CHECKING:
    from .query import QueryEngine

logger = logging.getLogger(__name__)

CSV_HEADER = ["ID", "Timestamp", "App", "Title", "Tags"]


def events_to_csv(events: Iterable[Event]) -> str:
    """Render events as CSV text, header first."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator='\n')
    writer.writerow(CSV_HEADER)
    for event in events:
        writer.writerow([
            str(event.id),
            event.timestamp,
            event.app,
            event.title,
            event.tags or '',
        ])
    return buffer.getvalue()


def export_csv(engine: "QueryEngine", query: str) -> str:
    """Run a search and serialize its results as CSV text."""
    return events_to_csv(engine.search(query))


def export_filename(now: datetime = None) -> str:
    """Download name like memory-export-1705320000000.csv (epoch millis)."""
    now = now or datetime.now()
    return f"memory-export-{int(now.timestamp() * 1000)}.csv"


def write_csv(text: str, output_dir: Path, filename: str = None) -> Path:
    """Write CSV text into output_dir.

    Args:
        text: CSV content from export_csv().
        output_dir: Target directory (created if missing).
        filename: File name, defaults to export_filename().

    Returns:
        Path to the written file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / (filename or export_filename())
    path.write_text(text, encoding='utf-8')
    logger.info(f"Exported CSV to {path}")
    return path
