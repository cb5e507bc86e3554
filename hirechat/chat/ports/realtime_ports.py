# =============================================================================
# File: hirechat/chat/ports/realtime_ports.py
# Description: Port interfaces consumed by the messaging core
# Pattern: Hexagonal Architecture / Ports & Adapters
# =============================================================================

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, runtime_checkable

from hirechat.chat.value_objects import ChangeEvent, RowFilter
from hirechat.common.enums.enums import Table

# Handlers are invoked on the event loop thread and must not block.
ChangeHandler = Callable[[ChangeEvent], None]
BroadcastHandler = Callable[[Dict[str, Any]], None]


@runtime_checkable
class RowStorePort(Protocol):
    """
    Port: Row Store

    Defined by: Messaging core
    Implemented by: PostgresRowStore (hirechat/infra/persistence/pg_row_store.py)

    Row-oriented access to messages, invitations, applications, projects and
    profiles. Every filter list is an AND of RowFilter predicates. Driver
    failures surface as RowStoreError.
    """

    async def select(
        self,
        table: Table,
        filters: Sequence[RowFilter] = (),
        columns: Optional[Sequence[str]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Fetch matching rows.

        Args:
            table: Source table
            filters: Predicates (AND)
            columns: Columns to return (all when None)
            order_by: Sort column
            descending: Sort direction
            limit: Maximum rows

        Returns:
            List of row dicts
        """
        ...

    async def count(self, table: Table, filters: Sequence[RowFilter] = ()) -> int:
        """Number of matching rows."""
        ...

    async def insert(self, table: Table, values: Dict[str, Any]) -> Dict[str, Any]:
        """Insert one row and return it as stored (server id and timestamps)."""
        ...

    async def update(
        self,
        table: Table,
        values: Dict[str, Any],
        filters: Sequence[RowFilter],
    ) -> int:
        """Update matching rows, returns the affected row count."""
        ...

    async def delete(self, table: Table, filters: Sequence[RowFilter]) -> int:
        """Delete matching rows, returns the affected row count."""
        ...


@runtime_checkable
class FeedSubscription(Protocol):
    """Handle returned by ChangeFeedPort.subscribe / BroadcastPort.join"""

    async def unsubscribe(self) -> None:
        """Stop delivery. Idempotent."""
        ...


@runtime_checkable
class ChangeFeedPort(Protocol):
    """
    Port: Change Feed

    Defined by: Messaging core
    Implemented by: PostgresChangeFeed (hirechat/infra/persistence/pg_change_feed.py)

    Delivery is at-least-once and unordered across rows. Consumers must be
    idempotent.
    """

    async def subscribe(
        self,
        table: Table,
        handler: ChangeHandler,
        row_filter: Optional[RowFilter] = None,
    ) -> FeedSubscription:
        """
        Receive row changes of a table.

        Args:
            table: Table to watch
            handler: Called with each ChangeEvent
            row_filter: Only events whose row matches are delivered

        Returns:
            Subscription handle

        Raises:
            ChangeFeedError: subscription could not be established
        """
        ...


@runtime_checkable
class BroadcastPort(Protocol):
    """
    Port: Ephemeral Broadcast

    Defined by: Messaging core
    Implemented by: RedisBroadcastChannel (hirechat/infra/realtime/redis_broadcast.py)

    Best-effort fan-out of transient signals (typing). Nothing is persisted.
    """

    async def join(self, channel: str, handler: BroadcastHandler) -> FeedSubscription:
        """Receive payloads published on a channel."""
        ...

    async def publish(self, channel: str, payload: Dict[str, Any]) -> None:
        """Publish a payload to everyone on the channel."""
        ...


@runtime_checkable
class ObjectStoragePort(Protocol):
    """
    Port: Object Storage

    Defined by: Messaging core
    Implemented by: LocalStorageAdapter (hirechat/infra/storage/local_adapter.py)
    """

    async def upload(self, path: str, content: bytes, content_type: str) -> str:
        """
        Store a binary object.

        Args:
            path: Object path (bucket-relative)
            content: File bytes
            content_type: MIME type

        Returns:
            Public URL of the stored object

        Raises:
            StorageError: upload failed
        """
        ...
