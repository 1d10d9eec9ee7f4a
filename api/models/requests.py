"""
API Request Models

Pydantic bodies for the control routes. Required fields are enforced here so
a missing field surfaces as a 400 through the validation handler.
"""

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from onebox.models import ContextPriority


class AddAccountRequest(BaseModel):
    """Body for adding an IMAP account at runtime."""
    user: str = Field(..., min_length=1, description="Mailbox login")
    password: str = Field(..., min_length=1, description="Mailbox password or app password")
    host: str = Field(..., min_length=1, description="IMAP server host")
    port: Optional[int] = Field(default=None, ge=1, le=65535, description="IMAP port, 993 when omitted")
    label: Optional[str] = Field(default=None, description="Display label")


class AddContextRequest(BaseModel):
    """Body for adding a manual context record."""
    content: str = Field(..., min_length=1, description="Context text")
    type: str = Field(..., min_length=1, description="Context type tag")
    priority: ContextPriority = Field(default=ContextPriority.MEDIUM, description="Retrieval priority")
    tags: List[str] = Field(default_factory=list, description="Free-form tags")


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1, description="User message")
    session_id: Optional[str] = Field(default=None, description="Existing session to continue")
    email_ids: List[str] = Field(default_factory=list, description="Indexed emails to use as context")

    @field_validator("message")
    @classmethod
    def validate_message(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Message must not be blank")
        return value


class UpdateContextRequest(BaseModel):
    """Partial update of a context record; omitted fields are left unchanged."""
    content: Optional[str] = Field(default=None, min_length=1, description="Replacement text")
    priority: Optional[ContextPriority] = Field(default=None, description="Retrieval priority")
    tags: Optional[List[str]] = Field(default=None, description="Replacement tags")
