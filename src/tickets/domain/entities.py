"""
Ticket Domain Entities
======================

Pure Python domain entities for the ticket lifecycle.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns. A ticket is only
changed through its methods; each method appends to the ticket's history,
which is append-only and exposed read-only.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from src.config import (
    Confidentiality, HistoryAction, Priority, TicketCategory, TicketStatus,
    TERMINAL_STATUSES,
)
from src.core import ValidationException


TITLE_MAX_LENGTH = 200
COMMENT_PREVIEW_LENGTH = 50

PRIORITY_LADDER = (Priority.LOW, Priority.MEDIUM, Priority.HIGH, Priority.CRITICAL)

_CHECKSUM_RE = re.compile(r"^[0-9a-fA-F]{64}$")
_UNSAFE_FILENAME_RE = re.compile(r"[^A-Za-z0-9._-]")


def sanitize_text(value: str) -> str:
    """Strip angle brackets and surrounding whitespace."""
    return value.replace("<", "").replace(">", "").strip()


def sanitize_filename(filename: str) -> str:
    """Reduce a client filename to [A-Za-z0-9._-]."""
    cleaned = _UNSAFE_FILENAME_RE.sub("_", filename.strip()).lstrip(".")
    return cleaned[:255] or "attachment"


def parse_choice(enum_cls, value: Any, name: str):
    """Coerce a raw value or legacy alias into `enum_cls`."""
    try:
        return enum_cls.parse(value)
    except (ValueError, TypeError):
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationException(
            f"Invalid {name}: {value!r}",
            {"field": name, "allowed": allowed},
        )


def next_priority(priority: Priority) -> Priority:
    """One step up the ladder; critical stays critical."""
    index = PRIORITY_LADDER.index(Priority(priority))
    return PRIORITY_LADDER[min(index + 1, len(PRIORITY_LADDER) - 1)]


def format_ticket_number(value: int, prefix: str = "TKT", width: int = 6) -> str:
    return f"{prefix}-{value:0{width}d}"


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value.value if hasattr(value, "value") else str(value)


@dataclass(frozen=True)
class HistoryEntry:
    """
    One immutable line of a ticket's change ledger.

    `actor_id` None means the system (SLA monitor).
    """
    sequence: int
    action: HistoryAction
    field: Optional[str]
    old_value: Optional[str]
    new_value: Optional[str]
    actor_id: Optional[str]
    timestamp: datetime
    ip_address: str
    reason: Optional[str] = None


@dataclass(frozen=True)
class Comment:
    id: str
    author_id: str
    text: str
    created_at: datetime


@dataclass(frozen=True)
class Attachment:
    """Metadata of an uploaded file; the bytes live elsewhere."""
    id: str
    filename: str
    mime_type: str
    size_bytes: int
    checksum: str
    uploaded_by: str
    uploaded_at: datetime


@dataclass(frozen=True)
class FieldChange:
    field: str
    old_value: Any
    new_value: Any


UPDATABLE_FIELDS = ("title", "description", "category", "priority", "status", "confidentiality")
_CHOICE_FIELDS = {
    "category": TicketCategory,
    "priority": Priority,
    "status": TicketStatus,
    "confidentiality": Confidentiality,
}


@dataclass
class Ticket:
    """
    Ticket aggregate.

    History, comments and attachments are child sequences that only grow.
    Entries added since the last load are tracked as pending so the
    repository inserts exactly those rows.
    """

    # Core attributes
    id: str
    ticket_number: str
    creator_id: str
    title: str
    description: str
    category: TicketCategory
    priority: Priority
    status: TicketStatus
    confidentiality: Confidentiality
    sla_deadline: datetime

    # Timestamps
    created_at: datetime
    updated_at: datetime

    # Optional
    assignee_id: Optional[str] = None
    resolved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    version: int = 1

    # SLA markers
    sla_escalated: bool = False
    sla_escalated_at: Optional[datetime] = None
    sla_warning_sent: bool = False
    sla_warning_sent_at: Optional[datetime] = None

    _history: List[HistoryEntry] = field(default_factory=list, init=False, repr=False)
    _comments: List[Comment] = field(default_factory=list, init=False, repr=False)
    _attachments: List[Attachment] = field(default_factory=list, init=False, repr=False)
    _pending_history: List[HistoryEntry] = field(default_factory=list, init=False, repr=False)
    _pending_comments: List[Comment] = field(default_factory=list, init=False, repr=False)
    _pending_attachments: List[Attachment] = field(default_factory=list, init=False, repr=False)
    _dirty_fields: set = field(default_factory=set, init=False, repr=False)

    def __post_init__(self):
        """Normalize enums and validate on initialization."""
        self.category = parse_choice(TicketCategory, self.category, "category")
        self.priority = parse_choice(Priority, self.priority, "priority")
        self.status = parse_choice(TicketStatus, self.status, "status")
        self.confidentiality = parse_choice(Confidentiality, self.confidentiality, "confidentiality")

        if self.updated_at < self.created_at:
            raise ValueError("updated_at cannot be before created_at")

    # ========== Construction ==========

    @classmethod
    def open(
        cls,
        id: str,
        ticket_number: str,
        creator_id: str,
        title: str,
        description: str,
        category: TicketCategory,
        priority: Priority,
        sla_deadline: datetime,
        ip_address: str,
        now: datetime,
        confidentiality: Confidentiality = Confidentiality.INTERNAL
    ) -> "Ticket":
        """Create a new open ticket with its first history entry."""
        title = sanitize_text(title)
        description = sanitize_text(description)
        _validate_title(title)
        if not description:
            raise ValidationException("Description must not be empty")

        ticket = cls(
            id=id,
            ticket_number=ticket_number,
            creator_id=creator_id,
            title=title,
            description=description,
            category=category,
            priority=priority,
            status=TicketStatus.OPEN,
            confidentiality=confidentiality,
            sla_deadline=sla_deadline,
            created_at=now,
            updated_at=now,
        )
        ticket._append(HistoryAction.CREATE, "status", None, TicketStatus.OPEN, creator_id, ip_address, now)
        return ticket

    def load_children(
        self,
        history: List[HistoryEntry],
        comments: List[Comment],
        attachments: List[Attachment]
    ) -> "Ticket":
        """Attach persisted child rows (repository use only)."""
        self._history = sorted(history, key=lambda e: e.sequence)
        self._comments = list(comments)
        self._attachments = list(attachments)
        return self

    # ========== Read-only views ==========

    @property
    def history(self) -> Tuple[HistoryEntry, ...]:
        return tuple(self._history)

    @property
    def comments(self) -> Tuple[Comment, ...]:
        return tuple(self._comments)

    @property
    def attachments(self) -> Tuple[Attachment, ...]:
        return tuple(self._attachments)

    @property
    def pending_history(self) -> Tuple[HistoryEntry, ...]:
        return tuple(self._pending_history)

    @property
    def pending_comments(self) -> Tuple[Comment, ...]:
        return tuple(self._pending_comments)

    @property
    def pending_attachments(self) -> Tuple[Attachment, ...]:
        return tuple(self._pending_attachments)

    @property
    def dirty_fields(self) -> frozenset:
        return frozenset(self._dirty_fields)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def mark_persisted(self) -> None:
        self._pending_history.clear()
        self._pending_comments.clear()
        self._pending_attachments.clear()
        self._dirty_fields.clear()

    # ========== Mutations ==========

    def _append(
        self,
        action: HistoryAction,
        field_name: Optional[str],
        old_value: Any,
        new_value: Any,
        actor_id: Optional[str],
        ip_address: str,
        now: datetime,
        reason: Optional[str] = None
    ) -> HistoryEntry:
        entry = HistoryEntry(
            sequence=len(self._history) + 1,
            action=action,
            field=field_name,
            old_value=_text(old_value),
            new_value=_text(new_value),
            actor_id=actor_id,
            timestamp=now,
            ip_address=ip_address,
            reason=reason,
        )
        self._history.append(entry)
        self._pending_history.append(entry)
        return entry

    def _set(self, name: str, value: Any) -> None:
        setattr(self, name, value)
        self._dirty_fields.add(name)

    def _touch(self, now: datetime) -> None:
        self._set("updated_at", now)
        self.version += 1

    def _set_status(self, status: TicketStatus, now: datetime) -> None:
        self._set("status", status)
        if status == TicketStatus.RESOLVED:
            self._set("resolved_at", now)
        elif status == TicketStatus.CLOSED:
            self._set("closed_at", now)

    def apply_update(
        self,
        changes: Dict[str, Any],
        actor_id: str,
        ip_address: str,
        now: datetime
    ) -> List[FieldChange]:
        """
        Apply field changes, one history entry per field that actually changed.

        Returns:
            The effective changes; empty means nothing was modified
        """
        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationException(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        normalized = {}
        for name, value in changes.items():
            if value is None:
                continue
            if name == "title":
                value = sanitize_text(value)
                _validate_title(value)
            elif name == "description":
                value = sanitize_text(value)
                if not value:
                    raise ValidationException("Description must not be empty")
            elif name in _CHOICE_FIELDS:
                value = parse_choice(_CHOICE_FIELDS[name], value, name)
            normalized[name] = value

        applied = []
        for name in UPDATABLE_FIELDS:
            if name not in normalized:
                continue
            old_value = getattr(self, name)
            new_value = normalized[name]
            if old_value == new_value:
                continue

            if name == "status":
                self._set_status(new_value, now)
            else:
                self._set(name, new_value)
            self._append(HistoryAction.UPDATE, name, old_value, new_value, actor_id, ip_address, now)
            applied.append(FieldChange(name, _text(old_value), _text(new_value)))

        if applied:
            self._touch(now)
        return applied

    def escalate(self, actor_id: str, ip_address: str, now: datetime, reason: Optional[str] = None) -> HistoryEntry:
        """Move to escalated; refused when already escalated."""
        if self.status == TicketStatus.ESCALATED:
            raise ValidationException("Ticket is already escalated")

        old_status = self.status
        self._set_status(TicketStatus.ESCALATED, now)
        self._touch(now)
        return self._append(
            HistoryAction.ESCALATE, "status", old_status, TicketStatus.ESCALATED,
            actor_id, ip_address, now,
            reason=sanitize_text(reason) if reason else None,
        )

    def reassign(self, assignee_id: str, actor_id: str, ip_address: str, now: datetime) -> Optional[HistoryEntry]:
        """Change the assignee; None when it is already that user."""
        if self.assignee_id == assignee_id:
            return None

        old_assignee = self.assignee_id
        self._set("assignee_id", assignee_id)
        self._touch(now)
        return self._append(HistoryAction.REASSIGN, "assignee_id", old_assignee, assignee_id, actor_id, ip_address, now)

    def add_comment(self, comment_id: str, author_id: str, text: str, ip_address: str, now: datetime) -> Comment:
        text = sanitize_text(text)
        if not text:
            raise ValidationException("Comment must not be empty")

        comment = Comment(id=comment_id, author_id=author_id, text=text, created_at=now)
        self._comments.append(comment)
        self._pending_comments.append(comment)
        self._touch(now)
        self._append(HistoryAction.COMMENT, "comments", None, text[:COMMENT_PREVIEW_LENGTH], author_id, ip_address, now)
        return comment

    def add_attachment(
        self,
        attachment_id: str,
        filename: str,
        mime_type: str,
        size_bytes: int,
        checksum: str,
        uploaded_by: str,
        ip_address: str,
        now: datetime
    ) -> Attachment:
        """Record attachment metadata; size and type limits are checked by the caller."""
        if not _CHECKSUM_RE.match(checksum or ""):
            raise ValidationException("Checksum must be a 64-character SHA-256 hex digest")
        if size_bytes <= 0:
            raise ValidationException("Attachment is empty")

        attachment = Attachment(
            id=attachment_id,
            filename=sanitize_filename(filename),
            mime_type=mime_type,
            size_bytes=size_bytes,
            checksum=checksum.lower(),
            uploaded_by=uploaded_by,
            uploaded_at=now,
        )
        self._attachments.append(attachment)
        self._pending_attachments.append(attachment)
        self._touch(now)
        self._append(HistoryAction.ATTACH, "attachments", None, attachment.filename, uploaded_by, ip_address, now)
        return attachment


def _validate_title(title: str) -> None:
    if not title:
        raise ValidationException("Title must not be empty")
    if len(title) > TITLE_MAX_LENGTH:
        raise ValidationException(f"Title must be at most {TITLE_MAX_LENGTH} characters")
