"""
Rewriting of dependent references from legacy downloads to media files.
"""
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple, Type

from sqlalchemy import or_
from sqlmodel import Session, SQLModel, select

from media_migrator.core.logging_config import log_debug
from media_migrator.migration.context import BatchContext
from media_migrator.migration.pager import FastPager
from media_migrator.models import Download, MessageTemplate
from media_migrator.models.message_template import ATTACHMENT_SLOTS


@dataclass(frozen=True)
class DependentSlots:
    """An entity type with nullable id columns that may reference legacy downloads."""
    model: Type[SQLModel]
    slots: Tuple[str, ...]


@dataclass(frozen=True)
class SlotReference:
    model: Type[SQLModel]
    dependent_id: int
    slot: str


DEFAULT_DEPENDENTS: Tuple[DependentSlots, ...] = (
    DependentSlots(MessageTemplate, ATTACHMENT_SLOTS),
)


class ReferenceIndex:
    """Legacy download id to every dependent slot holding it."""

    def __init__(self):
        self._references: Dict[int, List[SlotReference]] = defaultdict(list)

    def add(self, legacy_id: int, reference: SlotReference) -> None:
        self._references[legacy_id].append(reference)

    def get(self, legacy_id: int) -> List[SlotReference]:
        return list(self._references.get(legacy_id, ()))

    def pop(self, legacy_id: int) -> List[SlotReference]:
        return self._references.pop(legacy_id, [])

    def __contains__(self, legacy_id: int) -> bool:
        return legacy_id in self._references

    def __len__(self) -> int:
        return len(self._references)


class ReferenceRewriter:
    """
    Points dependent slots at the media files that replaced their downloads.

    Must run after the media files of a batch have been committed.
    """

    def __init__(self, dependents: Iterable[DependentSlots] = DEFAULT_DEPENDENTS, page_size: Optional[int] = None):
        self.dependents = tuple(dependents)
        self.page_size = page_size

    def build_index(self, session: Session) -> ReferenceIndex:
        """Index every non-null slot of every dependent. Only ids and slot values are loaded."""
        index = ReferenceIndex()
        for dependent in self.dependents:
            model = dependent.model
            columns = [getattr(model, slot) for slot in dependent.slots]
            statement = select(model.id, *columns).where(or_(*(column.is_not(None) for column in columns)))

            for page in FastPager(session, statement, self.page_size, id_column=model.id):
                for row in page:
                    for slot in dependent.slots:
                        value = getattr(row, slot)
                        if value is not None:
                            index.add(value, SlotReference(model, row.id, slot))

        log_debug(f"Indexed {len(index)} referenced downloads")
        return index

    def rewrite(self, session: Session, index: ReferenceIndex, ctx: BatchContext) -> int:
        """
        Rewrite the slots referencing the downloads migrated in this batch.

        A download is deleted once at least one of its references was
        rewritten. Slots that no longer hold the download id are left alone.

        Returns:
            Number of rewritten slots
        """
        rewritten = 0
        for legacy_id, media_file_id in ctx.reference_map.items():
            references = index.pop(legacy_id)
            if not references:
                continue

            download_rewritten = False
            for reference in references:
                dependent = session.get(reference.model, reference.dependent_id)
                if dependent is None or getattr(dependent, reference.slot) != legacy_id:
                    continue
                setattr(dependent, reference.slot, media_file_id)
                download_rewritten = True
                rewritten += 1

            if download_rewritten:
                download = session.get(Download, legacy_id)
                if download is not None:
                    session.delete(download)

        if rewritten:
            session.commit()
            log_debug(f"Rewrote {rewritten} download references", stage=ctx.stage)

        return rewritten
