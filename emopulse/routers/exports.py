"""
Export completion router.

POST /exports/notifications     S3 ObjectCreated notification for the export bucket
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from emopulse.core.config import Settings, get_settings
from emopulse.db.base import get_db
from emopulse.deps import get_storage
from emopulse.schemas.exports import ExportNotificationResponse, S3EventNotification
from emopulse.services.export import handle_object_created
from emopulse.services.storage import ObjectStorage

router = APIRouter(prefix="/exports", tags=["exports"])


@router.post("/notifications", response_model=ExportNotificationResponse)
def export_notification(
    payload: S3EventNotification,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    storage: ObjectStorage = Depends(get_storage),
):
    """
    Run the export transform for every completion marker in the
    notification. Objects that are not completion markers are ignored.
    """
    transformed = []
    for record in payload.Records:
        result = handle_object_created(
            db, settings, storage,
            bucket=record.s3.bucket.name,
            key=record.s3.object.key,
        )
        if result is not None:
            transformed.append(result.manifest_key)
    return ExportNotificationResponse(received=len(payload.Records), transformed=transformed)
