"""Attachment download API."""

from urllib.parse import quote

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from sqlalchemy.orm import Session

from helpdesk.core.deps import get_current_session, get_db
from helpdesk.core.security import ActorSession
from helpdesk.services import attachment_service

router = APIRouter(prefix="/attachments", tags=["attachments"])


@router.get("/{attachment_id}")
def download_attachment(
    attachment_id: int,
    db: Session = Depends(get_db),
    session: ActorSession = Depends(get_current_session),
) -> Response:
    download = attachment_service.get_attachment_download(db, attachment_id=attachment_id)
    return Response(
        content=download.content,
        media_type=download.mime_type,
        headers={
            "Content-Disposition": f"attachment; filename*=UTF-8''{quote(download.filename)}"
        },
    )
