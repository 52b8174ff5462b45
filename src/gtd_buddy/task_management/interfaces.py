"""Abstract interfaces for the document store behind the tool catalog."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Literal

FilterOperator = Literal["==", "!=", "<", "<=", ">", ">=", "in"]
FILTER_OPERATORS: frozenset[str] = frozenset({"==", "!=", "<", "<=", ">", ">=", "in"})


class _ServerTimestamp:
    """Sentinel replaced by the store's clock when a document is written."""

    _instance: "_ServerTimestamp | None" = None

    def __new__(cls) -> "_ServerTimestamp":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


@dataclass(frozen=True)
class QueryFilter:
    """A single ``field op value`` condition; all filters in a query are ANDed."""

    field: str
    op: FilterOperator
    value: Any


@dataclass(frozen=True)
class OrderBy:
    """Ordering clause for a query."""

    field: str
    descending: bool = False


@dataclass
class Document:
    """A document read from the store, with timestamps already normalized."""

    id: str
    data: dict[str, Any] = field(default_factory=dict)


class DocumentStore(ABC):
    """
    Abstract interface for a schema-less document store.

    Documents live in collections addressed by path. A collection path has an
    odd number of ``/``-separated segments, so ``tasks`` and
    ``users/u1/contexts`` are both valid collections.

    Implementations convert ``datetime`` values to their native timestamp
    representation on the way in and back to aware ``datetime`` values on the
    way out; callers never see native timestamps.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """
        Open the connection and create any required schema.

        Raises:
            StoreError: If the store cannot be opened
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release the connection."""
        pass

    @abstractmethod
    async def get(self, collection: str, document_id: str) -> Document | None:
        """
        Fetch a single document.

        Returns:
            Document, or None if it does not exist
        """
        pass

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: list[QueryFilter] | None = None,
        order_by: list[OrderBy] | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        """
        Query documents in a collection.

        Args:
            collection: Collection path
            filters: Conditions, ANDed together
            order_by: Ordering clauses, applied in order
            limit: Maximum number of documents to return

        Returns:
            Matching documents
        """
        pass

    @abstractmethod
    async def create(
        self,
        collection: str,
        data: dict[str, Any],
        document_id: str | None = None,
    ) -> str:
        """
        Create a document.

        Returns:
            The new document id (store-assigned unless given)
        """
        pass

    @abstractmethod
    async def update(
        self, collection: str, document_id: str, partial: dict[str, Any]
    ) -> None:
        """
        Apply a partial update atomically.

        Keys missing from ``partial`` are left untouched; keys whose value is
        None are removed from the document.

        Raises:
            NotFoundError: If the document does not exist
        """
        pass

    @abstractmethod
    async def delete(self, collection: str, document_id: str) -> None:
        """
        Delete a document.

        Raises:
            NotFoundError: If the document does not exist
        """
        pass

    @abstractmethod
    async def batch_delete(self, collection: str, document_ids: list[str]) -> int:
        """
        Delete several documents in one transaction.

        Returns:
            Number of documents removed (missing ids are ignored)
        """
        pass

    @staticmethod
    def subcollection(parent_collection: str, parent_id: str, name: str) -> str:
        """Build the path of a collection nested under a parent document."""
        return f"{parent_collection}/{parent_id}/{name}"
