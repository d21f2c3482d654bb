# drink_diary/services/conversation.py
"""Conversation router: one inbound chat event in, outbound messages out.

The current step lives in the session store (`user_state`), so every event is
handled from scratch: read the step, check what it points at, apply the step's
effect, write the next step or clear it.

Database sessions are opened per unit of work and never held across a
delivery or a polish call.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from drink_diary.models import BackupFrequency, Subject
from drink_diary.schemas import GiftDraft, Step, StoredState, SubjectRef
from drink_diary.services.backup import backup_document, build_backup_csv
from drink_diary.services.backup_settings import (
    frequency_label,
    get_backup_setting,
    parse_frequency,
    set_frequency,
)
from drink_diary.services.formatting import format_history, split_message
from drink_diary.services.parsers import ENTRY_FORMAT_HINT, EntryParseError, parse_entry_input
from drink_diary.services.share_links import (
    create_gift_link,
    get_or_create_plain_link,
    next_gift_bottle_code,
    random_token,
    share_url,
)
from drink_diary.services.subjects import (
    archive_subject,
    create_entry,
    create_subject,
    ensure_user,
    get_subject_for_owner,
    list_entries,
    list_subjects,
    unarchive_subject,
    update_entry_cleaned_text,
)
from drink_diary.services.user_state import clear_state, get_state, set_state
from drink_diary.transport import Button, InboundEvent, OutboundMessage, TextMessage, Transport
from drink_diary.utils import _now, normalize_single_line, short_datetime

logger = logging.getLogger(__name__)

MENU_NEW_SUBJECT = "➕ New drink"
MENU_CURRENT = "📂 Current drinks"
MENU_ARCHIVED = "🗄 Archived drinks"
MENU_QR = "🔗 Drink QR"
MENU_BACKUP = "💾 CSV backup"

MAIN_MENU_ROWS = (
    (MENU_NEW_SUBJECT, MENU_CURRENT),
    (MENU_ARCHIVED, MENU_QR),
    (MENU_BACKUP,),
)

MIN_NAME_LENGTH = 2

HELP_TEXT = "\n".join([
    "Commands:",
    "/start - open the menu",
    "/cancel - cancel the current step",
    "",
    "How it works:",
    "- Current drinks: add an entry or archive the drink;",
    "- Archived drinks: bring a drink back;",
    "- Drink QR: pick the link type (plain or gift), then the drink;",
    "- CSV backup: export now or set up automatic delivery to this chat.",
    "",
    "Entry format:",
    "24.02.2026 | Racked, added 50 g honey",
    "or just the text (today's date is used).",
])

STALE_GIFT_STEP = "This step is out of date. Start again from the drink's QR menu."
RESTART_FROM_QR = "Drink not found. Start again from the drink's QR menu."


class Polisher(Protocol):
    @property
    def enabled(self) -> bool: ...

    async def polish(self, subject_name: str, text: str) -> Optional[str]: ...


class ConversationRouter:
    """Drives the multi-step chat flows for one user at a time."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        transport: Transport,
        polisher: Polisher,
        *,
        public_base_url: str,
        default_frequency: BackupFrequency = BackupFrequency.weekly,
        token_factory: Callable[[], str] = random_token,
        clock: Callable[[], datetime] = _now,
    ):
        self.session_maker = session_maker
        self.transport = transport
        self.polisher = polisher
        self.public_base_url = public_base_url.rstrip("/")
        self.default_frequency = default_frequency
        self.token_factory = token_factory
        self.clock = clock

        self._commands = {
            "start": self._cmd_start,
            "help": self._cmd_help,
            "cancel": self._cmd_cancel,
        }
        self._menu = {
            MENU_NEW_SUBJECT: self._menu_new_subject,
            MENU_CURRENT: self._menu_current,
            MENU_ARCHIVED: self._menu_archived,
            MENU_QR: self._menu_qr,
            MENU_BACKUP: self._menu_backup,
        }
        self._callbacks = {
            "current:open": self._cb_current_open,
            "current:add": self._cb_current_add,
            "current:history": self._cb_history,
            "current:archive": self._cb_current_archive,
            "archived:open": self._cb_archived_open,
            "archived:history": self._cb_history,
            "archived:restore": self._cb_archived_restore,
            "qr-type:plain": self._cb_qr_type,
            "qr-type:gift": self._cb_qr_type,
            "qr:plain": self._cb_qr_plain,
            "qr:gift": self._cb_qr_gift,
            "gift-msg:none": self._cb_gift_decision,
            "gift-msg:add": self._cb_gift_decision,
            "backup:export": self._cb_backup_export,
            "backup:set": self._cb_backup_set,
        }
        self._steps = {
            Step.await_subject_name: self._step_subject_name,
            Step.await_entry_text: self._step_entry_text,
            Step.await_gift_recipient: self._step_gift_recipient,
            Step.await_gift_decision: self._step_gift_decision,
            Step.await_gift_message: self._step_gift_message,
        }

    # ---------- plumbing ----------

    async def _send(self, owner_key: str, message: OutboundMessage) -> None:
        await self.transport.deliver(owner_key, message)

    async def _say(self, owner_key: str, text: str, *, menu: bool = False, buttons=()) -> None:
        await self._send(owner_key, TextMessage(text=text, buttons=buttons, main_menu=menu))

    async def _reset(self, owner_key: str, text: str) -> None:
        async with self.session_maker.begin() as db:
            await clear_state(db, owner_key)
        await self._say(owner_key, text, menu=True)

    async def _polish(self, subject_name: str, text: str) -> Optional[str]:
        """Best-effort cleanup; any collaborator failure keeps the raw text."""
        try:
            return await self.polisher.polish(subject_name, text)
        except Exception:
            logger.warning("Text polish raised; keeping raw text", exc_info=True)
            return None

    async def _owned_subject(self, owner_key: str, subject_id: Optional[str]) -> Optional[Subject]:
        async with self.session_maker.begin() as db:
            return await get_subject_for_owner(db, subject_id, owner_key)

    async def handle(self, event: InboundEvent) -> None:
        async with self.session_maker.begin() as db:
            await ensure_user(
                db,
                event.owner_key,
                username=event.username,
                first_name=event.first_name,
                default_frequency=self.default_frequency,
                now=self.clock(),
            )

        if event.kind == "command":
            handler = self._commands.get(event.data)
            if handler is None:
                logger.debug("Ignoring unknown command /%s from %s", event.data, event.owner_key)
                return
            await handler(event.owner_key)
        elif event.kind == "callback":
            await self._on_callback(event.owner_key, event.data)
        elif event.kind == "text":
            await self._on_text(event.owner_key, event.data)
        else:
            raise ValueError(f"unknown event kind {event.kind!r}")

    # ---------- commands ----------

    async def _cmd_start(self, owner_key: str) -> None:
        async with self.session_maker.begin() as db:
            await clear_state(db, owner_key)
        await self._say(owner_key, "\n".join([
            "Drink diary is running.",
            "Main menu: New drink, Current, Archived, QR, CSV backup.",
            "Use /help for a hint.",
        ]), menu=True)

    async def _cmd_help(self, owner_key: str) -> None:
        await self._say(owner_key, HELP_TEXT, menu=True)

    async def _cmd_cancel(self, owner_key: str) -> None:
        async with self.session_maker.begin() as db:
            await clear_state(db, owner_key)
        await self._say(owner_key, "Current step cancelled.", menu=True)

    # ---------- main menu ----------

    async def _menu_new_subject(self, owner_key: str) -> None:
        async with self.session_maker.begin() as db:
            await set_state(db, owner_key, Step.await_subject_name, now=self.clock())
        await self._say(owner_key, "Enter the drink name (for example: Cider, Cherry mead):")

    async def _menu_current(self, owner_key: str) -> None:
        async with self.session_maker.begin() as db:
            subjects = await list_subjects(db, owner_key, "active")
        if not subjects:
            await self._say(owner_key, "No current drinks yet. Create a new one.", menu=True)
            return
        rows = [[Button(s.name, f"current:open:{s.id}")] for s in subjects]
        await self._say(owner_key, "Current drinks. Pick one:", buttons=rows)

    async def _menu_archived(self, owner_key: str) -> None:
        async with self.session_maker.begin() as db:
            subjects = await list_subjects(db, owner_key, "archived")
        if not subjects:
            await self._say(owner_key, "No archived drinks yet.", menu=True)
            return
        rows = [[Button(s.name, f"archived:open:{s.id}")] for s in subjects]
        await self._say(owner_key, "Archived drinks. Pick one:", buttons=rows)

    async def _menu_qr(self, owner_key: str) -> None:
        rows = [[Button("Plain QR", "qr-type:plain")], [Button("Gift QR", "qr-type:gift")]]
        await self._say(owner_key, "Choose the QR type:", buttons=rows)

    async def _menu_backup(self, owner_key: str, header: Optional[str] = None) -> None:
        async with self.session_maker.begin() as db:
            setting = await get_backup_setting(db, owner_key, now=self.clock())
        rows = [
            [Button("📤 Export now", "backup:export")],
            [Button("Off", "backup:set:off"), Button("7 days", "backup:set:weekly")],
            [Button("14 days", "backup:set:biweekly"), Button("30 days", "backup:set:monthly")],
        ]
        lines = [
            header,
            "The CSV backup is sent to this chat.",
            f"Frequency: {frequency_label(setting.frequency)}",
            f"Next send: {short_datetime(setting.next_run_at)}",
            f"Last send: {short_datetime(setting.last_sent_at)}",
        ]
        await self._say(owner_key, "\n".join(line for line in lines if line), buttons=rows)

    # ---------- callbacks ----------

    async def _on_callback(self, owner_key: str, data: str) -> None:
        scope, _, rest = (data or "").partition(":")
        action, _, arg = rest.partition(":")
        handler = self._callbacks.get(f"{scope}:{action}")
        if handler is None:
            logger.debug("Ignoring unknown callback %r from %s", data, owner_key)
            return
        await handler(owner_key, action, arg)

    async def _cb_current_open(self, owner_key: str, action: str, subject_id: str) -> None:
        subject = await self._owned_subject(owner_key, subject_id)
        if not subject or subject.is_archived:
            await self._say(owner_key, "Current drink not found.")
            return
        rows = [
            [Button("📝 Add entry", f"current:add:{subject.id}")],
            [Button("📚 History", f"current:history:{subject.id}")],
            [Button("📦 Archive", f"current:archive:{subject.id}")],
        ]
        await self._say(owner_key, f"Drink: {subject.name}\nChoose an action:", buttons=rows)

    async def _cb_current_add(self, owner_key: str, action: str, subject_id: str) -> None:
        async with self.session_maker.begin() as db:
            subject = await get_subject_for_owner(db, subject_id, owner_key)
            if subject and not subject.is_archived:
                await set_state(db, owner_key, Step.await_entry_text, SubjectRef(subject_id=subject.id), now=self.clock())
        if not subject or subject.is_archived:
            await self._say(owner_key, "Drink not found or already archived.")
            return
        await self._say(owner_key, "\n".join([
            f"Entry for {subject.name}.",
            "Send the text as:",
            ENTRY_FORMAT_HINT,
            "or just the text.",
        ]))

    async def _cb_history(self, owner_key: str, action: str, subject_id: str) -> None:
        async with self.session_maker.begin() as db:
            subject = await get_subject_for_owner(db, subject_id, owner_key)
            entries = await list_entries(db, subject.id) if subject else []
        if not subject:
            await self._say(owner_key, "Drink not found.")
            return
        if not entries:
            await self._say(owner_key, f"No entries for {subject.name} yet.")
            return
        for chunk in split_message(format_history(subject.name, entries)):
            await self._say(owner_key, chunk)

    async def _cb_current_archive(self, owner_key: str, action: str, subject_id: str) -> None:
        async with self.session_maker.begin() as db:
            subject = await get_subject_for_owner(db, subject_id, owner_key)
            archived = bool(subject) and await archive_subject(db, subject.id, owner_key, now=self.clock())
        if not archived:
            await self._say(owner_key, "Drink is already archived or not found.")
            return
        await self._say(owner_key, f'Drink "{subject.name}" moved to the archive.')

    async def _cb_archived_open(self, owner_key: str, action: str, subject_id: str) -> None:
        subject = await self._owned_subject(owner_key, subject_id)
        if not subject or not subject.is_archived:
            await self._say(owner_key, "Archived drink not found.")
            return
        rows = [
            [Button("📚 History", f"archived:history:{subject.id}")],
            [Button("♻️ Restore", f"archived:restore:{subject.id}")],
        ]
        await self._say(owner_key, f"Archived drink: {subject.name}\nChoose an action:", buttons=rows)

    async def _cb_archived_restore(self, owner_key: str, action: str, subject_id: str) -> None:
        async with self.session_maker.begin() as db:
            subject = await get_subject_for_owner(db, subject_id, owner_key)
            restored = bool(subject) and await unarchive_subject(db, subject.id, owner_key, now=self.clock())
        if not restored:
            await self._say(owner_key, "Drink is not in the archive.")
            return
        await self._say(owner_key, f'Drink "{subject.name}" is current again.')

    async def _cb_qr_type(self, owner_key: str, action: str, arg: str) -> None:
        async with self.session_maker.begin() as db:
            subjects = await list_subjects(db, owner_key, "all")
        if not subjects:
            await self._say(owner_key, "No drinks yet. Create one first.", menu=True)
            return
        rows = [
            [Button(f"{s.name} (archived)" if s.is_archived else s.name, f"qr:{action}:{s.id}")]
            for s in subjects
        ]
        prompt = "Pick a drink for the plain QR:" if action == "plain" else "Pick a drink for the gift QR:"
        await self._say(owner_key, prompt, buttons=rows)

    async def _cb_qr_plain(self, owner_key: str, action: str, subject_id: str) -> None:
        subject = await self._owned_subject(owner_key, subject_id)
        if not subject:
            await self._say(owner_key, "Drink not found.")
            return

        refreshed = await self._polish_missing_entries(subject)
        if refreshed:
            await self._say(owner_key, f"Cleaned up {refreshed} entries before issuing the link.")

        async with self.session_maker.begin() as db:
            link = await get_or_create_plain_link(
                db, subject, owner_key, generate=self.token_factory, now=self.clock()
            )
            token = link.token
        await self._say(owner_key, f"QR link for {subject.name}\n{share_url(self.public_base_url, token)}")

    async def _polish_missing_entries(self, subject: Subject) -> int:
        if not self.polisher.enabled:
            return 0
        async with self.session_maker.begin() as db:
            pending = [(e.id, e.raw_text) for e in await list_entries(db, subject.id) if not e.cleaned_text]

        updated = 0
        for entry_id, raw_text in pending:
            cleaned = await self._polish(subject.name, raw_text)
            if not cleaned:
                continue
            async with self.session_maker.begin() as db:
                await update_entry_cleaned_text(db, entry_id, cleaned, now=self.clock())
            updated += 1
        return updated

    async def _cb_qr_gift(self, owner_key: str, action: str, subject_id: str) -> None:
        async with self.session_maker.begin() as db:
            subject = await get_subject_for_owner(db, subject_id, owner_key)
            if subject:
                await set_state(db, owner_key, Step.await_gift_recipient, SubjectRef(subject_id=subject.id), now=self.clock())
        if not subject:
            await self._say(owner_key, "Drink not found.")
            return
        await self._say(owner_key, f"Gift QR for {subject.name}.\nEnter the recipient's name:")

    async def _cb_gift_decision(self, owner_key: str, action: str, arg: str) -> None:
        async with self.session_maker.begin() as db:
            state = await get_state(db, owner_key)
        if not state or state.step != Step.await_gift_decision:
            await self._say(owner_key, STALE_GIFT_STEP)
            return
        if not isinstance(state.payload, GiftDraft):
            await self._reset(owner_key, "Could not read the gift draft. Start again.")
            return

        if action == "none":
            await self._finalize_gift(owner_key, state.payload, None)
            return

        async with self.session_maker.begin() as db:
            await set_state(db, owner_key, Step.await_gift_message, state.payload, now=self.clock())
        await self._say(owner_key, "Type the message for the recipient:")

    async def _cb_backup_export(self, owner_key: str, action: str, arg: str) -> None:
        async with self.session_maker.begin() as db:
            backup = await build_backup_csv(db, owner_key, now=self.clock())
        await self._send(owner_key, backup_document(backup, "Manual CSV backup."))

    async def _cb_backup_set(self, owner_key: str, action: str, value: str) -> None:
        frequency = parse_frequency(value)
        if frequency is None:
            await self._say(owner_key, "Unknown backup frequency.")
            return
        async with self.session_maker.begin() as db:
            setting = await set_frequency(db, owner_key, frequency, now=self.clock())
            label = frequency_label(setting.frequency)
        await self._menu_backup(owner_key, header=f"Backup settings updated: {label}.")

    # ---------- free text ----------

    async def _on_text(self, owner_key: str, raw: str) -> None:
        text = (raw or "").strip()
        if text.startswith("/"):
            return

        menu_handler = self._menu.get(normalize_single_line(text))
        if menu_handler is not None:
            await menu_handler(owner_key)
            return

        async with self.session_maker.begin() as db:
            state = await get_state(db, owner_key)
        if state is None:
            await self._say(owner_key, "I did not get that. Use /help or the menu buttons.", menu=True)
            return
        if state.step is None:
            await self._reset(owner_key, "The conversation state was reset. Repeat the action from the menu.")
            return

        await self._steps[state.step](owner_key, state, text)

    async def _step_subject_name(self, owner_key: str, state: StoredState, text: str) -> None:
        if len(text) < MIN_NAME_LENGTH:
            await self._say(owner_key, "The name is too short. Use at least 2 characters.")
            return
        async with self.session_maker.begin() as db:
            subject = await create_subject(db, owner_key, text, now=self.clock())
            await set_state(db, owner_key, Step.await_entry_text, SubjectRef(subject_id=subject.id), now=self.clock())
        await self._say(owner_key, "\n".join([
            f"Drink created: {subject.name}",
            "Add the first entry.",
            "Send the text as:",
            ENTRY_FORMAT_HINT,
            "or just the text.",
        ]), menu=True)

    async def _active_subject_for_entry(self, owner_key: str, state: StoredState) -> Optional[Subject]:
        """Subject the entry step points at; clears the step and reports when it is unusable."""
        if not isinstance(state.payload, SubjectRef):
            await self._reset(owner_key, "Step was reset, pick the drink again.")
            return None
        subject = await self._owned_subject(owner_key, state.payload.subject_id)
        if not subject:
            await self._reset(owner_key, "Drink not found. Pick it again.")
            return None
        if subject.is_archived:
            await self._reset(owner_key, "This drink is archived. Restore it before adding entries.")
            return None
        return subject

    async def _step_entry_text(self, owner_key: str, state: StoredState, text: str) -> None:
        subject = await self._active_subject_for_entry(owner_key, state)
        if subject is None:
            return

        try:
            parsed = parse_entry_input(text, today=self.clock().date())
        except EntryParseError:
            await self._say(owner_key, f"Could not read the entry. Use {ENTRY_FORMAT_HINT} or just text.")
            return

        await self._say(owner_key, "Saving the entry and cleaning up the text...")
        cleaned = await self._polish(subject.name, parsed.text)

        async with self.session_maker.begin() as db:
            current = await get_state(db, owner_key)
            fresh = state.same_as(current)
            if fresh:
                subject = await get_subject_for_owner(db, subject.id, owner_key)
                if subject and not subject.is_archived:
                    await create_entry(
                        db,
                        subject_id=subject.id,
                        owner_key=owner_key,
                        entry_date=parsed.entry_date,
                        raw_text=parsed.text,
                        cleaned_text=cleaned,
                        now=self.clock(),
                    )
                    await clear_state(db, owner_key)

        if not fresh:
            logger.info("Discarding stale entry for %s: conversation moved on during cleanup", owner_key)
            await self._say(owner_key, "The entry was not saved: the conversation moved on in the meantime.")
            return
        if not subject or subject.is_archived:
            await self._reset(owner_key, "This drink was archived or removed meanwhile. The entry was not saved.")
            return

        await self._say(owner_key, "\n".join([
            f"Entry saved for {subject.name}.",
            f"Date: {parsed.entry_date.isoformat()}",
            "The text was cleaned up and saved." if cleaned else "The original text was saved.",
        ]), menu=True)

    async def _step_gift_recipient(self, owner_key: str, state: StoredState, text: str) -> None:
        if not isinstance(state.payload, SubjectRef):
            await self._reset(owner_key, "Step was reset. Start again from the drink's QR menu.")
            return
        subject = await self._owned_subject(owner_key, state.payload.subject_id)
        if not subject:
            await self._reset(owner_key, RESTART_FROM_QR)
            return
        if len(text) < MIN_NAME_LENGTH:
            await self._say(owner_key, "The recipient's name is too short. Try again.")
            return

        async with self.session_maker.begin() as db:
            bottle_code = await next_gift_bottle_code(db, subject.id)
            draft = GiftDraft(subject_id=subject.id, recipient=text, bottle_code=bottle_code)
            await set_state(db, owner_key, Step.await_gift_decision, draft, now=self.clock())

        rows = [[Button("No message", "gift-msg:none"), Button("Add a message", "gift-msg:add")]]
        await self._say(owner_key, "\n".join([
            f"Recipient: {text}",
            f"Bottle number: {bottle_code}",
            "Add a personal message?",
        ]), buttons=rows)

    async def _step_gift_decision(self, owner_key: str, state: StoredState, text: str) -> None:
        # only the buttons answer this step
        await self._reset(owner_key, STALE_GIFT_STEP)

    async def _step_gift_message(self, owner_key: str, state: StoredState, text: str) -> None:
        if not isinstance(state.payload, GiftDraft):
            await self._reset(owner_key, "Could not read the gift draft. Start again from the drink's QR menu.")
            return
        await self._finalize_gift(owner_key, state.payload, text.strip() or None)

    async def _finalize_gift(self, owner_key: str, draft: GiftDraft, message: Optional[str]) -> None:
        async with self.session_maker.begin() as db:
            subject = await get_subject_for_owner(db, draft.subject_id, owner_key)
            if subject:
                link = await create_gift_link(
                    db,
                    subject,
                    owner_key,
                    recipient=draft.recipient,
                    bottle_code=draft.bottle_code,
                    message=message,
                    generate=self.token_factory,
                    now=self.clock(),
                )
                token = link.token
                await clear_state(db, owner_key)
        if not subject:
            await self._reset(owner_key, RESTART_FROM_QR)
            return

        await self._say(owner_key, "\n".join([
            f"Gift QR for {subject.name}",
            f"Recipient: {draft.recipient}",
            f"Bottle number: {draft.bottle_code}",
            share_url(self.public_base_url, token),
        ]))
        await self._say(owner_key, "Gift link created and saved.", menu=True)
