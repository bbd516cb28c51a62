from __future__ import annotations

import re
import secrets
from uuid import uuid4


_PREFIX_RE = re.compile(r"^[a-z][a-z0-9]{1,24}$")

SESSION_ID_PREFIX = "sess"


def new_prefixed_id(prefix: str) -> str:
    """Generate a new opaque ID using a short prefix.

    Format: `{prefix}_{uuidhex}`.
    """
    if not _PREFIX_RE.fullmatch(prefix):
        raise ValueError(
            "Invalid id prefix. Expected lowercase letters/digits, 2-25 chars, "
            "starting with a letter."
        )
    return f"{prefix}_{uuid4().hex}"


def new_session_id() -> str:
    return new_prefixed_id(SESSION_ID_PREFIX)


def new_request_id() -> str:
    return secrets.token_hex(8)
