"""Row source: raw sheet rows from the backing store.

Sheets (Staff, Settings, one per role) are stored as snapshot documents
``{"_id": sheet_name, "rows": [[cell, ...], ...]}``. The first row is the
header row, as in the spreadsheet the snapshots are exported from.
"""

import logging
from typing import Any, Protocol, runtime_checkable

from pymongo.collection import Collection
from pymongo.errors import PyMongoError

from ..exceptions import DataSourceError

logger = logging.getLogger(__name__)

Rows = list[list[Any]]


@runtime_checkable
class RowSource(Protocol):
    """Interface consumed from the data store collaborator."""

    def read_rows(self, source_name: str) -> Rows | None:
        """Return every row of ``source_name`` or None if the sheet does not exist."""
        ...


class MongoRowSource:
    """RowSource reading sheet snapshots from a MongoDB collection."""

    def __init__(self, collection: Collection):
        self.collection = collection

    def read_rows(self, source_name: str) -> Rows | None:
        try:
            document = self.collection.find_one({"_id": source_name}, {"rows": 1})
        except PyMongoError as e:
            raise DataSourceError(
                message="Sheet read failed",
                details={"sheet": source_name},
                original_exception=e,
            ) from e

        if document is None:
            logger.debug(f"Sheet {source_name} not found")
            return None

        rows = document.get("rows") or []
        logger.debug(f"Read {len(rows)} rows from sheet {source_name}")
        return [list(row) for row in rows]
