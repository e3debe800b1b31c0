"""
Export of a user's todos as JSON or CSV.

CSV layout: a bare header row with the fixed column order below, then one
row per todo with every cell quoted and embedded quotes doubled. Tags and
mention names are joined with ", ", note contents with "; ".
"""
from __future__ import annotations

import csv
import io
import json
from datetime import date
from typing import Any, Dict, Iterable, List

from .schemas import TodoOut

CSV_COLUMNS = ("id", "title", "description", "priority", "createdAt", "tags", "mentions", "notes")

EXPORT_FORMATS = {
    "json": "application/json",
    "csv": "text/csv",
}


def _csv_row(todo: Dict[str, Any]) -> List[str]:
    priority = todo["priority"]
    return [
        str(todo["id"]),
        todo["title"],
        todo.get("description") or "",
        getattr(priority, "value", priority),
        todo["created_at"].isoformat(),
        ", ".join(tag["name"] for tag in todo["tags"]),
        ", ".join(m["user"]["name"] for m in todo["mentions"]),
        "; ".join(note["content"] for note in todo["notes"]),
    ]


# PUBLIC_INTERFACE
def todos_to_csv(todos: Iterable[Dict[str, Any]]) -> str:
    """Render detailed todos as CSV text (rows separated by "\\n", no trailing newline)."""
    buf = io.StringIO()
    buf.write(",".join(CSV_COLUMNS) + "\n")
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    for todo in todos:
        writer.writerow(_csv_row(todo))
    # drop the terminator after the last row
    return buf.getvalue()[:-1]


# PUBLIC_INTERFACE
def todos_to_json(todos: Iterable[Dict[str, Any]]) -> str:
    """Render detailed todos as a pretty-printed JSON array with relations inlined."""
    payload = [TodoOut(**todo).model_dump(mode="json") for todo in todos]
    return json.dumps(payload, indent=2, ensure_ascii=False)


def export_filename(user_id: str, fmt: str, today: date) -> str:
    return f"todos-{user_id}-{today.isoformat()}.{fmt}"
