#Marks rides as a package.
#Ride request models, the document store contract and the named queries over it.

from .models import (
    RideRequest,
    RideStatus,
    RideDirection,
    PassengerSnapshot,
    DriverSnapshot,
)
from .store import (
    DocumentStore,
    InMemoryDocumentStore,
    StoreError,
    DocumentNotFound,
    WriteConflict,
)

__all__ = [
    "RideRequest",
    "RideStatus",
    "RideDirection",
    "PassengerSnapshot",
    "DriverSnapshot",
    "DocumentStore",
    "InMemoryDocumentStore",
    "StoreError",
    "DocumentNotFound",
    "WriteConflict",
]
