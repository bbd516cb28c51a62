from __future__ import annotations

import re
from enum import Enum
from typing import Any


_ERROR_CODE_RE = re.compile(r"^[A-Z][A-Z0-9]*(_[A-Z0-9]+)*$")


class ParleyError(Exception):
    """Base typed error for Parley.

    Every subclass carries a `kind` drawn from its own enumeration. The kind's
    value is the stable machine `code` that clients see, so the HTTP boundary
    can map errors to statuses by matching on kinds instead of on classes.
    """

    def __init__(
        self,
        kind: Enum,
        message: str,
        *,
        meta: dict[str, Any] | None = None,
    ) -> None:
        code = str(kind.value)
        if not _ERROR_CODE_RE.fullmatch(code):
            raise ValueError(
                "Invalid Parley error code. Expected upper snake case, "
                f"got: {code!r}"
            )
        super().__init__(message)
        self.kind = kind
        self.code = code
        self.message = message
        self.meta = dict(meta or {})

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.code}, message={self.message!r})"


class RequestErrorKind(str, Enum):
    VALIDATION = "VALIDATION_ERROR"


class RequestError(ParleyError):
    """Caller supplied a request the service cannot act on."""

    def __init__(
        self,
        message: str,
        *,
        kind: RequestErrorKind = RequestErrorKind.VALIDATION,
        meta: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(kind, message, meta=meta)
