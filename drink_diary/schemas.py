from pydantic import BaseModel, ConfigDict, Field
from typing import Literal, Optional, List, Union
from datetime import date, datetime
import enum

from .models import ShareLinkKind


# =========================
# CONVERSATION STEPS
# =========================
class Step(str, enum.Enum):
    await_subject_name = "await_subject_name"
    await_entry_text = "await_entry_text"
    await_gift_recipient = "await_gift_recipient"
    await_gift_decision = "await_gift_message_decision"
    await_gift_message = "await_gift_message_text"


class SubjectRef(BaseModel):
    kind: Literal["subject_ref"] = "subject_ref"
    subject_id: str = Field(min_length=1)


class GiftDraft(BaseModel):
    kind: Literal["gift_draft"] = "gift_draft"
    subject_id: str = Field(min_length=1)
    recipient: str = Field(min_length=1)
    bottle_code: str = Field(min_length=1)


StatePayload = Union[SubjectRef, GiftDraft]

# Which payload shape each step carries; None means "no payload".
STEP_PAYLOADS: dict[Step, Optional[type[BaseModel]]] = {
    Step.await_subject_name: None,
    Step.await_entry_text: SubjectRef,
    Step.await_gift_recipient: SubjectRef,
    Step.await_gift_decision: GiftDraft,
    Step.await_gift_message: GiftDraft,
}


class StoredState(BaseModel):
    """Session store row as seen by the conversation router.

    `step` is None when the stored step name is unknown; `payload` is None
    when the step has no payload or the stored one no longer validates.
    """

    owner_key: str
    step: Optional[Step]
    raw_step: str
    payload: Optional[StatePayload] = None
    revision: str
    updated_at: datetime

    def same_as(self, other: Optional["StoredState"]) -> bool:
        return other is not None and other.revision == self.revision


# =========================
# SHARE LINK SCHEMAS
# =========================
class SubjectRead(BaseModel):
    id: str
    name: str
    archived_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class EntryRead(BaseModel):
    id: str
    entry_date: date
    raw_text: str
    cleaned_text: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ShareLinkRead(BaseModel):
    token: str
    kind: ShareLinkKind
    gift_recipient: Optional[str] = None
    bottle_code: Optional[str] = None
    gift_message: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ResolvedShareLinkRead(BaseModel):
    subject: SubjectRead
    link: ShareLinkRead
    entries: List[EntryRead] = []
