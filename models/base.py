"""
Pydantic models shared by the intake pipeline, routers and repository
"""
from datetime import datetime
from typing import Optional, Dict, List, Any, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator


class FormRecord(BaseModel):
    """Read-only view of a form row as the intake pipeline sees it"""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    definition: Union[List[Any], Dict[str, Any]] = Field(default_factory=list)
    is_active: bool = True
    notification_email: Optional[str] = Field(default=None, alias="notificationEmail")
    email_template: Optional[str] = Field(default=None, alias="emailTemplate")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator('id', mode='before')
    def coerce_id(cls, v):
        # asyncpg hands back uuid.UUID for UUID columns
        return str(v) if v is not None else v

    @field_validator('is_active', mode='before')
    def null_is_active(cls, v):
        # Column defaults to true; a NULL is treated the same way
        return True if v is None else v

    @field_validator('notification_email', 'email_template', mode='before')
    def blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    def public_view(self) -> Dict[str, Any]:
        """Shape returned to the embed script"""
        return {
            "id": self.id,
            "name": self.name,
            "definition": self.definition,
            "is_active": self.is_active,
        }


class SpamSignal(BaseModel):
    signal: str
    score: int


class SpamVerdict(BaseModel):
    """Outcome of a spam evaluation"""
    is_spam: bool
    reason: str = ""
    signals: List[SpamSignal] = Field(default_factory=list)

    @property
    def total_score(self) -> int:
        return sum(s.score for s in self.signals)


class SubmissionResult(BaseModel):
    submission_id: str

    def to_response(self) -> Dict[str, Any]:
        # Identical for spam and legitimate submissions
        return {
            "success": True,
            "message": "Submission received",
            "submission_id": self.submission_id,
        }
