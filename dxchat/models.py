from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

Phase = Literal["intro", "questioning", "lab_analysis", "final_report"]
ModelPhase = Literal["questioning", "lab_analysis", "final_report"]
Role = Literal["user", "assistant"]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class DiagnosisProbability(BaseModel):
    condition: str
    percentage: float = Field(..., description="Diagnostic probability (0-100) as reported by the model.")


class DiagnosticReply(BaseModel):
    """Structured reply returned by the model for every turn."""
    reply: str
    probabilities: Optional[List[DiagnosisProbability]] = None
    phase: ModelPhase
    progress: float = 0


class Attachment(BaseModel):
    mime_type: str
    data: str = Field(..., description="Base64 payload without the data: prefix.")
    name: Optional[str] = None

    @property
    def uri(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")


class Message(BaseModel):
    id: str
    role: Role
    content: str
    timestamp: datetime = Field(default_factory=_now)
    probabilities: Optional[List[DiagnosisProbability]] = None
    attachments: Optional[List[Attachment]] = None
    is_error: bool = Field(False, description="Local error notice; never sent to the model.")


INITIAL_PROBABILITIES = [DiagnosisProbability(condition="Differential Diagnosis", percentage=0)]


class ChatState(BaseModel):
    messages: List[Message] = Field(default_factory=list)
    is_loading: bool = False
    current_probabilities: List[DiagnosisProbability] = Field(
        default_factory=lambda: [p.model_copy() for p in INITIAL_PROBABILITIES]
    )
    phase: Phase = "intro"
    progress: float = 0
    language: str = "en"
    api_key: Optional[str] = None
    api_key_error: Optional[str] = None


# ---------
# API views
# ---------
class AttachmentView(BaseModel):
    mime_type: str
    name: Optional[str] = None
    uri: Optional[str] = Field(None, description="Data URI for image previews; omitted for documents.")


class MessageView(BaseModel):
    id: str
    role: Role
    content: str
    timestamp: datetime
    is_error: bool = False
    attachments: List[AttachmentView] = Field(default_factory=list)


class SessionView(BaseModel):
    session_id: str
    phase: Phase
    phase_label: str
    phase_description: str
    progress: float
    language: str
    is_loading: bool
    has_api_key: bool
    api_key_error: Optional[str] = None
    probabilities: List[DiagnosisProbability]
    messages: List[MessageView]
    ui_text: Dict[str, str] = Field(default_factory=dict)


class CreateSessionRequest(BaseModel):
    language: Optional[str] = None


class LanguageRequest(BaseModel):
    language: str


class ApiKeyRequest(BaseModel):
    api_key: str
