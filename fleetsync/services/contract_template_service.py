# fleetsync/services/contract_template_service.py
"""
Contract (PDF) templates: a background image plus positioned text fields.

The preview endpoint renders the template with each field's label instead of
reservation data, so positions can be checked visually.
"""

import os
from typing import Optional
from sqlalchemy.orm import Session
from fleetsync.schemas.contract_template import ContractTemplate
from fleetsync.services.api_client import ApiConnectionError, ApiError, BackofficeClient
from fleetsync.services.notification_service import SUCCESS, notify, notify_error
from fleetsync.utils.logger import get_logger

logger = get_logger(__name__)


def placeholder_values(template: ContractTemplate) -> dict[str, str]:
    """source → label shown in the preview, in field order."""
    return {f.source: f"[{f.name}]" for f in template.fields}


async def download_preview(client: BackofficeClient, db: Session, template_id: int,
                           out_path: Optional[str] = None) -> Optional[bytes]:
    """Fetch the label-filled preview PDF, optionally writing it to out_path."""
    try:
        pdf = await client.preview_template(template_id)
    except (ApiError, ApiConnectionError) as e:
        logger.error(f"Preview for template {template_id} failed: {e}")
        await notify_error(db, e, title="Error", entity="template")
        return None

    if out_path:
        os.makedirs(os.path.dirname(os.path.abspath(out_path)), exist_ok=True)
        with open(out_path, "wb") as f:
            f.write(pdf)
        logger.info(f"Preview saved to {out_path} ({len(pdf)} bytes)")
    await notify(db, SUCCESS, "Preview Generated", "Preview shows field labels for better visibility")
    return pdf
