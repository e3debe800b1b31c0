from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from ..auth import get_current_user
from ..export import EXPORT_FORMATS, export_filename, todos_to_csv, todos_to_json
from ..models import UserEntity
from ..repositories import ListQuery, Repository, get_repository
from ..services import detail_todo

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/export", tags=["export"])


# PUBLIC_INTERFACE
@router.get(
    "/",
    summary="Export Todos",
    description=(
        "Download every todo of a user, newest first, as JSON (relations inlined) or CSV "
        "(id, title, description, priority, createdAt, tags, mentions, notes)."
    ),
    responses={
        200: {"description": "File download"},
        400: {"description": "Unsupported format"},
    },
)
def export_todos(
    format: str = Query("json", description="'json' or 'csv'"),
    user_id: Optional[str] = Query(None, description="Owner id; defaults to the caller"),
    repo: Repository = Depends(get_repository),
    user: UserEntity = Depends(get_current_user),
) -> Response:
    fmt = format.strip().lower()
    if fmt not in EXPORT_FORMATS:
        raise HTTPException(status_code=400, detail="format must be 'json' or 'csv'")

    owner = user_id or user["id"]
    todos, _ = repo.list_todos(ListQuery(owner_id=owner, limit=None))
    detailed = [detail_todo(repo, t) for t in todos]

    body = todos_to_csv(detailed) if fmt == "csv" else todos_to_json(detailed)
    filename = export_filename(owner, fmt, date.today())
    logger.info("Exported %d todos of %s as %s", len(detailed), owner, fmt)
    return Response(
        content=body,
        media_type=EXPORT_FORMATS[fmt],
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
