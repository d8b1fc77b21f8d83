"""
Batch transaction scope.
"""
from typing import Type

from sqlmodel import Session

from media_migrator.core.database import HOOKS_ENABLED_KEY

_MISSING = object()


class BatchTransactionScope:
    """
    Temporarily reconfigures a session for batch work.

    Inside the scope autoflush is off (unless ``auto_detect_changes``),
    committed instances are not expired and entity hooks follow
    ``hooks_enabled``. On exit the scope rolls back when an exception escaped,
    otherwise commits (``auto_commit``) or discards uncommitted leftovers. The
    previous session settings are always restored.

    Example:
        with BatchTransactionScope(session, hooks_enabled=False, auto_commit=False) as scope:
            session.add(file)
            scope.commit()
            scope.detach(MediaFile)
    """

    def __init__(
        self,
        session: Session,
        hooks_enabled: bool = True,
        auto_commit: bool = True,
        auto_detect_changes: bool = True,
    ):
        self.session = session
        self.hooks_enabled = hooks_enabled
        self.auto_commit = auto_commit
        self.auto_detect_changes = auto_detect_changes

    def __enter__(self) -> "BatchTransactionScope":
        self._previous_autoflush = self.session.autoflush
        self._previous_expire_on_commit = self.session.expire_on_commit
        self._previous_hooks = self.session.info.get(HOOKS_ENABLED_KEY, _MISSING)

        if not self.auto_detect_changes:
            self.session.autoflush = False
        self.session.expire_on_commit = False
        self.session.info[HOOKS_ENABLED_KEY] = self.hooks_enabled
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> bool:
        try:
            if exc_type is not None:
                self.session.rollback()
            elif self.auto_commit:
                self.commit()
            else:
                self.session.rollback()
        finally:
            self.session.autoflush = self._previous_autoflush
            self.session.expire_on_commit = self._previous_expire_on_commit
            if self._previous_hooks is _MISSING:
                self.session.info.pop(HOOKS_ENABLED_KEY, None)
            else:
                self.session.info[HOOKS_ENABLED_KEY] = self._previous_hooks
        return False

    def commit(self) -> int:
        """Commit pending changes and return the number of new, dirty and deleted objects."""
        count = len(self.session.new) + len(self.session.dirty) + len(self.session.deleted)
        self.session.commit()
        return count

    def detach(self, *entity_types: Type) -> int:
        """
        Expunge tracked instances of the given types (all instances when none given).

        Returns:
            Number of detached instances
        """
        detached = 0
        for instance in list(self.session.identity_map.values()):
            if entity_types and not isinstance(instance, entity_types):
                continue
            self.session.expunge(instance)
            detached += 1
        return detached
