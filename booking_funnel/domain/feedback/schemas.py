from pydantic import BaseModel, Field, conint


class FeedbackRequest(BaseModel):
    job_id: str = Field(min_length=1)
    rating: conint(ge=1, le=5)
    feedback: str | None = Field(default=None, max_length=2000)


class FeedbackResponse(BaseModel):
    success: bool
    job_id: str
    rating: int
    review_requested: bool = False
    escalated: bool = False
