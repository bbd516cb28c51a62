from __future__ import annotations

from enum import Enum
from typing import Any

from parley.kernel.errors import ParleyError


class ProviderErrorKind(str, Enum):
    UNAVAILABLE = "PROVIDER_UNAVAILABLE"
    TIMEOUT = "PROVIDER_TIMEOUT"
    REJECTED = "PROVIDER_REJECTED"


class ProviderError(ParleyError):
    """The completion provider failed to produce a full response."""

    def __init__(
        self,
        kind: ProviderErrorKind,
        message: str,
        *,
        status_code: int | None = None,
        meta: dict[str, Any] | None = None,
    ) -> None:
        meta = dict(meta or {})
        if status_code is not None:
            meta.setdefault("provider_status", status_code)
        super().__init__(kind, message, meta=meta)
        self.status_code = status_code
