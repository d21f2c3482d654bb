# drink_diary/services/user_state.py
"""Session store: the single pending conversation step per user.

A write replaces step and payload wholesale; there is no history. A missing
row means the user is idle.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ValidationError
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from drink_diary.models import ConversationState
from drink_diary.schemas import STEP_PAYLOADS, StatePayload, Step, StoredState
from drink_diary.services.upsert import insert_for
from drink_diary.utils import _now, new_id

logger = logging.getLogger(__name__)


def _check_payload(step: Step, payload: Optional[BaseModel]) -> None:
    expected = STEP_PAYLOADS[step]
    if expected is None:
        if payload is not None:
            raise ValueError(f"step {step.value} takes no payload")
        return
    if not isinstance(payload, expected):
        raise ValueError(f"step {step.value} needs a {expected.__name__} payload")


async def set_state(
    db: AsyncSession,
    owner_key: str,
    step: Step,
    payload: Optional[StatePayload] = None,
    *,
    now: Optional[datetime] = None,
) -> None:
    _check_payload(step, payload)
    now = now or _now()
    body = payload.model_dump_json() if payload is not None else None
    revision = new_id()
    insert = insert_for(db)
    await db.execute(
        insert(ConversationState)
        .values(owner_key=owner_key, step=step.value, payload=body, revision=revision, updated_at=now)
        .on_conflict_do_update(
            index_elements=[ConversationState.owner_key],
            set_={"step": step.value, "payload": body, "revision": revision, "updated_at": now},
        )
    )


async def get_state(db: AsyncSession, owner_key: str) -> Optional[StoredState]:
    row = (await db.execute(
        select(ConversationState)
        .where(ConversationState.owner_key == owner_key)
        .execution_options(populate_existing=True)
    )).scalars().first()
    if not row:
        return None

    try:
        step = Step(row.step)
    except ValueError:
        logger.warning("Unknown conversation step %r for %s", row.step, owner_key)
        step = None

    payload = None
    model = STEP_PAYLOADS.get(step) if step else None
    if model is not None and row.payload:
        try:
            payload = model.model_validate_json(row.payload)
        except ValidationError:
            logger.warning("Discarding malformed %s payload for %s", row.step, owner_key)

    return StoredState(
        owner_key=row.owner_key,
        step=step,
        raw_step=row.step,
        payload=payload,
        revision=row.revision,
        updated_at=row.updated_at,
    )


async def clear_state(db: AsyncSession, owner_key: str) -> None:
    await db.execute(delete(ConversationState).where(ConversationState.owner_key == owner_key))
