"""
Name: Data Store Errors

Responsibilities:
  - Replace generic RuntimeErrors with precise meanings for connector misuse
"""


class DataStoreError(Exception):
    """Base for data store lifecycle errors."""


class DataStoreAlreadyConnectedError(DataStoreError):
    """connect() was called twice on the same connector."""


class DataStoreClosedError(DataStoreError):
    """The handle was used after close()."""
