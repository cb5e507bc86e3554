from hirechat.chat.ports.realtime_ports import (
    BroadcastHandler,
    BroadcastPort,
    ChangeFeedPort,
    ChangeHandler,
    FeedSubscription,
    ObjectStoragePort,
    RowStorePort,
)

__all__ = [
    "BroadcastHandler",
    "BroadcastPort",
    "ChangeFeedPort",
    "ChangeHandler",
    "FeedSubscription",
    "ObjectStoragePort",
    "RowStorePort",
]
