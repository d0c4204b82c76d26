from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from sqlalchemy.orm import Session
from fleetsync.database import get_db
from fleetsync.services.contract_template_service import download_preview
from fleetsync.services.sync_session import SyncSession, get_sync_session

router = APIRouter()


@router.get("/templates/{template_id}/preview", response_class=Response,
            summary="Contract template rendered with field labels")
async def preview_template(template_id: int, db: Session = Depends(get_db),
                           session: SyncSession = Depends(get_sync_session)):
    pdf = await download_preview(session.client, db, template_id)
    if pdf is None:
        raise HTTPException(status_code=502, detail="Preview could not be generated, see /api/v1/notifications")
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="template-{template_id}-preview.pdf"'},
    )
