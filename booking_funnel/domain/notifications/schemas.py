from typing import Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

Channel = Literal["sms", "email", "both"]
RecipientType = Literal["customer", "cleaner", "manager"]


class NotificationRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    channel: Channel
    recipient_type: RecipientType = "customer"
    recipient_id: str | None = None
    phone: str | None = None
    email: EmailStr | None = None
    template: str = Field(min_length=1, max_length=64)
    sms_body: str | None = None
    email_subject: str | None = None
    email_html: str | None = None
    related_entity_type: str | None = None
    related_entity_id: str | None = None
    check_opt_out: bool = True

    @model_validator(mode="after")
    def require_channel_content(self) -> "NotificationRequest":
        if "sms" in self.channels and not self.sms_body:
            raise ValueError("sms_body is required for sms notifications")
        if "email" in self.channels and not (self.email_subject and self.email_html):
            raise ValueError("email_subject and email_html are required for email notifications")
        return self

    @property
    def channels(self) -> list[str]:
        if self.channel == "both":
            return ["sms", "email"]
        return [self.channel]


class ChannelResult(BaseModel):
    channel: Literal["sms", "email"]
    status: Literal["sent", "failed"]
    external_id: str | None = None
    error: str | None = None


class NotificationResponse(BaseModel):
    success: bool
    results: list[ChannelResult]
