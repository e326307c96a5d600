"""custodian-core: cloud governance policy matching, planning and storage."""

from __future__ import annotations

__version__ = "0.3.0"

from custodiancore.errors import (
    CollectorError,
    CustodianError,
    PolicyNotFoundError,
    PolicyValidationError,
    StorageIOError,
)

__all__ = [
    "__version__",
    "CustodianError",
    "PolicyNotFoundError",
    "PolicyValidationError",
    "StorageIOError",
    "CollectorError",
]
