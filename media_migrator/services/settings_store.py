"""
Key-value settings stored in the ``setting`` table.
"""
from typing import Mapping, Optional

from sqlmodel import Session, select

from media_migrator.core.logging_config import log_info
from media_migrator.models import Setting


class SettingsStore:
    """Reads settings and registers defaults."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        setting = self.session.exec(select(Setting).where(Setting.name == name)).first()
        if setting is None or setting.value is None:
            return default
        return setting.value

    def add_defaults(self, defaults: Mapping[str, str]) -> int:
        """
        Insert settings that do not exist yet. Existing values are never changed.

        Returns:
            Number of settings added
        """
        if not defaults:
            return 0

        existing = set(
            self.session.exec(select(Setting.name).where(Setting.name.in_(list(defaults)))).all()
        )

        added = 0
        for name, value in defaults.items():
            if name in existing:
                continue
            self.session.add(Setting(name=name, value=value))
            added += 1

        if added:
            self.session.commit()
            log_info(f"Registered {added} default settings")

        return added
