from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field


class AttachmentInfo(BaseModel):
    file_name: Optional[str] = None
    content_type: str = "application/octet-stream"
    size: int = 0
    content: Optional[bytes] = Field(default=None, exclude=True, repr=False)


class EmailMessage(BaseModel):
    message_number: int
    from_address: Optional[str] = None
    subject: Optional[str] = None
    sent_date: Optional[datetime] = None
    received_date: Optional[datetime] = None
    text_body: Optional[str] = None
    html_body: Optional[str] = None
    is_read: bool = False
    attachments: List[AttachmentInfo] = Field(default_factory=list)

    def __str__(self) -> str:
        return (f"EmailMessage(message_number={self.message_number}, from={self.from_address!r}, "
                f"subject={self.subject!r}, sent_date={self.sent_date}, is_read={self.is_read}, "
                f"attachments={len(self.attachments)})")
