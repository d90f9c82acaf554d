from datetime import datetime

from pydantic import BaseModel


class JobCompletionResponse(BaseModel):
    job_id: str
    status: str
    completed_at: datetime | None
    feedback_url: str
    notifications_queued: int
