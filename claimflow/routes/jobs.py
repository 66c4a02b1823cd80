"""Job and notification routes."""

import uuid

from fastapi import APIRouter, Depends

from claimflow.pipeline import Pipeline
from claimflow.routes.deps import get_pipeline
from claimflow.schemas.job import JobResponse

router = APIRouter(tags=["jobs"])


@router.get("/jobs/stats")
def job_stats(pipeline: Pipeline = Depends(get_pipeline)):
    """Number of jobs per status."""
    return pipeline.queue.counts()


@router.get("/jobs/{job_id}", response_model=JobResponse)
def get_job(job_id: uuid.UUID, pipeline: Pipeline = Depends(get_pipeline)):
    """State of a single job."""
    return pipeline.queue.get_job(job_id)


@router.get("/users/{user_id}/notifications")
def list_notifications(user_id: str, unread: bool = False, pipeline: Pipeline = Depends(get_pipeline)):
    """Notifications for a submitter."""
    return [
        {
            "id": str(n.id),
            "type": n.type,
            "title": n.title,
            "message": n.message,
            "related_id": n.related_id,
            "is_read": n.is_read,
            "created_at": n.created_at.isoformat() if n.created_at else None,
        }
        for n in pipeline.notifier.list_for_user(user_id, unread_only=unread)
    ]


@router.get("/users/{user_id}/notifications/unread-count")
def unread_notifications(user_id: str, pipeline: Pipeline = Depends(get_pipeline)):
    """Number of unread notifications for a submitter."""
    return {"unread_count": pipeline.notifier.unread_count(user_id)}


@router.post("/users/{user_id}/notifications/{notification_id}/read")
def mark_notification_read(user_id: str, notification_id: uuid.UUID, pipeline: Pipeline = Depends(get_pipeline)):
    """Mark a notification as read."""
    pipeline.notifier.mark_read(user_id, notification_id)
    return {"unread_count": pipeline.notifier.unread_count(user_id)}
