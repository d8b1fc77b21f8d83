"""
Keyset pagination over large tables.
"""
from typing import Any, Generic, Iterator, List, Optional, TypeVar

from sqlmodel import Session

from media_migrator.core.config import settings

T = TypeVar("T")


class FastPager(Generic[T]):
    """
    Reads a query page by page using ``id > last_id ORDER BY id LIMIT n``.

    Rows changed by the caller between pages (e.g. no longer matching the
    filter) never shift the following pages. The statement must not carry its
    own ordering or limit. A pager is consumed once.
    """

    def __init__(self, session: Session, statement: Any, page_size: Optional[int] = None, id_column: Any = None):
        if page_size is not None and page_size <= 0:
            raise ValueError("page_size must be positive")

        self.session = session
        self.statement = statement
        self.page_size = page_size or settings.migration_batch_size
        self.id_column = id_column if id_column is not None else statement.column_descriptions[0]["entity"].id
        self.last_id: Optional[int] = None
        self.exhausted = False

    def read_next_page(self) -> Optional[List[T]]:
        """Return the next page, or None when there are no more rows."""
        if self.exhausted:
            return None

        statement = self.statement
        if self.last_id is not None:
            statement = statement.where(self.id_column > self.last_id)
        statement = statement.order_by(self.id_column).limit(self.page_size)

        page = list(self.session.exec(statement).all())
        if not page:
            self.exhausted = True
            return None

        self.last_id = page[-1].id
        if len(page) < self.page_size:
            self.exhausted = True
        return page

    def __iter__(self) -> Iterator[List[T]]:
        while True:
            page = self.read_next_page()
            if page is None:
                return
            yield page
