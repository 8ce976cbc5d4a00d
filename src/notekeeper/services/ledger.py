"""Attachment reconciliation ledger.

An editing session keeps one ledger per open note. It records, for each
attachment kind, which stored paths the note had when the editor opened,
which of those the user removed, and which new payloads the user added.
Nothing is written while the user edits; at save time the ledger is
reduced to a SaveDiff that says exactly what to delete and what to store.

Index correspondence is the core invariant: the first
``len(existing_paths(kind))`` entries of ``working_items(kind)`` are the
payloads of ``existing_paths(kind)``, in the same order. Everything after
them was added during the session.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from notekeeper.exceptions import LedgerIndexError
from notekeeper.models.schema import Attachment, AttachmentKind

logger = logging.getLogger(__name__)

PayloadResolver = Callable[[AttachmentKind, str], Any]


@dataclass(frozen=True)
class PendingItem:
    """A payload added during the session that still has to be stored.

    Attributes:
        payload: Bytes to write, or a finished recording awaiting storage.
        order_index: Position the new attachment record will get.
    """

    payload: Any
    order_index: int


@dataclass(frozen=True)
class KindDiff:
    """Mutations needed for one attachment kind.

    Attributes:
        to_delete: Stored paths the user removed, in removal order.
        to_persist_new: Payloads added this session, in display order.
        retained: Stored paths that survive, in display order.
    """

    to_delete: Tuple[str, ...] = ()
    to_persist_new: Tuple[PendingItem, ...] = ()
    retained: Tuple[str, ...] = ()

    @property
    def has_changes(self) -> bool:
        return bool(self.to_delete or self.to_persist_new)


@dataclass(frozen=True)
class SaveDiff:
    """The complete set of attachment mutations for one save.

    `kinds` holds (kind, KindDiff) pairs so the value stays hashable.
    """

    kinds: Tuple[Tuple[AttachmentKind, KindDiff], ...] = ()

    def __getitem__(self, kind: AttachmentKind) -> KindDiff:
        for candidate, diff in self.kinds:
            if candidate == kind:
                return diff
        return KindDiff()

    @property
    def has_changes(self) -> bool:
        return any(diff.has_changes for _, diff in self.kinds)


class AttachmentLedger:
    """Session-scoped bookkeeping of a note's images and voice memos."""

    def __init__(self) -> None:
        self._existing: Dict[AttachmentKind, List[str]] = {k: [] for k in AttachmentKind}
        self._working: Dict[AttachmentKind, List[Any]] = {k: [] for k in AttachmentKind}
        self._deleted: Dict[AttachmentKind, List[str]] = {k: [] for k in AttachmentKind}

    @classmethod
    def from_attachments(
        cls,
        attachments: Mapping[AttachmentKind, Sequence[Attachment]],
        resolve: Optional[PayloadResolver] = None,
    ) -> "AttachmentLedger":
        """Build a ledger from a note's stored attachments.

        Args:
            attachments: Stored attachments per kind. They are sorted by
                order index here, once; later code relies on list order.
            resolve: Turns a stored path into what the user is shown
                (e.g. image bytes). Defaults to the path itself.

        Returns:
            A ledger whose working items mirror the stored attachments.
        """
        ledger = cls()
        for kind, items in attachments.items():
            ordered = sorted(items, key=lambda a: a.order_index)
            paths = [a.path for a in ordered]
            ledger._existing[kind] = list(paths)
            ledger._working[kind] = [
                resolve(kind, path) if resolve else path for path in paths
            ]
        return ledger

    # =========================================================================
    # Views
    # =========================================================================

    def existing_paths(self, kind: AttachmentKind) -> Tuple[str, ...]:
        """Stored paths still shown to the user."""
        return tuple(self._existing[kind])

    def working_items(self, kind: AttachmentKind) -> Tuple[Any, ...]:
        """Everything currently shown to the user, in display order."""
        return tuple(self._working[kind])

    def deleted_paths(self, kind: AttachmentKind) -> Tuple[str, ...]:
        """Stored paths the user removed during this session."""
        return tuple(self._deleted[kind])

    def pending_items(self, kind: AttachmentKind) -> Tuple[Any, ...]:
        """Payloads added during this session and not removed again."""
        return tuple(self._working[kind][len(self._existing[kind]):])

    def count(self, kind: AttachmentKind) -> int:
        return len(self._working[kind])

    @property
    def has_changes(self) -> bool:
        return any(
            self._deleted[kind] or self.pending_items(kind) for kind in AttachmentKind
        )

    # =========================================================================
    # Mutations
    # =========================================================================

    def add_item(self, kind: AttachmentKind, payload: Any) -> None:
        """Append a new payload. Nothing is stored until save."""
        self._working[kind].append(payload)
        logger.debug(f"Added pending {kind.value} at position {len(self._working[kind]) - 1}")

    def remove_item(self, kind: AttachmentKind, index: int) -> Any:
        """Remove the item at `index` from the user's view.

        Removing a stored item marks its path for deletion. Removing an
        item added during this session just drops it.

        Returns:
            The removed payload.

        Raises:
            LedgerIndexError: If `index` is not a valid position.
        """
        working = self._working[kind]
        if not 0 <= index < len(working):
            raise LedgerIndexError(kind.value, index, len(working))

        payload = working.pop(index)
        existing = self._existing[kind]
        if index < len(existing):
            path = existing.pop(index)
            if path not in self._deleted[kind]:
                self._deleted[kind].append(path)
            logger.debug(f"Marked {path} for deletion")
        return payload

    # =========================================================================
    # Diff
    # =========================================================================

    def compute_diff(self) -> SaveDiff:
        """Reduce the ledger to the mutations a save must apply.

        New payloads get order indexes after every retained stored item.
        This does no I/O and does not change the ledger, so calling it
        twice in a row gives equal results.
        """
        kinds = {}
        for kind in AttachmentKind:
            base = len(self._existing[kind])
            kinds[kind] = KindDiff(
                to_delete=tuple(self._deleted[kind]),
                to_persist_new=tuple(
                    PendingItem(payload=payload, order_index=base + offset)
                    for offset, payload in enumerate(self.pending_items(kind))
                ),
                retained=tuple(self._existing[kind]),
            )
        return SaveDiff(kinds=tuple(kinds.items()))
