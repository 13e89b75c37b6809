"""
Message Log -- append-only record of finalized conversation messages.

The scheduler is the only writer. Presentation code reads snapshots (tuples
of frozen records) or subscribes to appends; nothing it holds can be mutated
behind the scheduler's back. Draft text from an in-flight stream never
reaches the log.
"""

import logging
import uuid
from collections.abc import Callable, Iterator
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

logger = logging.getLogger(__name__)

USER_SENDER_ID = "user"
USER_DISPLAY_NAME = "User"

AppendListener = Callable[["MessageRecord"], None]


@dataclass(frozen=True)
class MessageRecord:
    """One finalized message."""

    id: str
    sender_id: str
    sender_name: str
    text: str
    is_reasoning: bool
    sequence_index: int
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())

    @property
    def is_user(self) -> bool:
        return self.sender_id == USER_SENDER_ID

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class MessageLog:
    """Ordered, append-only sequence of MessageRecords."""

    def __init__(self):
        self._records: list[MessageRecord] = []
        self._listeners: list[AppendListener] = []

    def append(
        self,
        sender_id: str,
        sender_name: str,
        text: str,
        is_reasoning: bool = False,
    ) -> MessageRecord:
        """Append a record; sequence indexes start at 0 and never repeat."""
        record = MessageRecord(
            id=uuid.uuid4().hex[:12],
            sender_id=sender_id,
            sender_name=sender_name,
            text=text,
            is_reasoning=is_reasoning,
            sequence_index=len(self._records),
        )
        self._records.append(record)
        logger.debug(
            f"[MessageLog] #{record.sequence_index} {sender_name}"
            f"{' (reasoning)' if is_reasoning else ''}: {len(text)} chars"
        )
        for listener in list(self._listeners):
            listener(record)
        return record

    def append_user(self, text: str) -> MessageRecord:
        return self.append(USER_SENDER_ID, USER_DISPLAY_NAME, text)

    def tail(self, count: int) -> tuple[MessageRecord, ...]:
        """The last `count` records, oldest first."""
        if count <= 0:
            return ()
        return tuple(self._records[-count:])

    def snapshot(self) -> tuple[MessageRecord, ...]:
        return tuple(self._records)

    def subscribe(self, listener: AppendListener) -> Callable[[], None]:
        """Call `listener` after every append. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[MessageRecord]:
        return iter(self.snapshot())

    def __getitem__(self, index: int) -> MessageRecord:
        return self._records[index]
