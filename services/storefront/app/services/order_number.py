from __future__ import annotations

import re
import secrets
import time

_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"

ORDER_NUMBER_RE = re.compile(r"^ONL-[0-9A-Z]+-[0-9A-Z]{4}$")


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_ALPHABET[rem])
    return "".join(reversed(digits))


def generate_order_number(now_ms: int | None = None) -> str:
    """Human-facing order number: ONL-<base36 epoch ms>-<4 random chars>.

    36**4 suffixes per millisecond. Collisions are not checked anywhere.
    """

    if now_ms is None:
        now_ms = time.time_ns() // 1_000_000
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(4))
    return f"ONL-{_base36(now_ms)}-{suffix}"
