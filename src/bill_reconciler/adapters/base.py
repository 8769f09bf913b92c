"""Message store protocol."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import date

    from bill_reconciler.models import RawMessage


@runtime_checkable
class MessageStore(Protocol):
    """Protocol for mailboxes the normalizer reads from."""

    def list_message_ids(
        self, subjects: Sequence[str], since: date | None, limit: int
    ) -> list[str]: ...

    def get_message(self, message_id: str) -> RawMessage: ...

    def get_attachment(self, message_id: str, attachment_id: str) -> bytes: ...
