"""Infra DB: connector, shared handle and typed errors."""

from .connector import DataStoreConnector, DataStoreHandle
from .errors import (
    DataStoreAlreadyConnectedError,
    DataStoreClosedError,
    DataStoreError,
)

__all__ = [
    "DataStoreConnector",
    "DataStoreHandle",
    "DataStoreError",
    "DataStoreAlreadyConnectedError",
    "DataStoreClosedError",
]
