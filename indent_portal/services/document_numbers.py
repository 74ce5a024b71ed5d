from __future__ import annotations

import secrets
from datetime import datetime, timezone


def _epoch_millis(now: datetime | None = None) -> int:
    moment = now or datetime.now(tz=timezone.utc)
    return int(moment.timestamp() * 1000)


def document_number(prefix: str, scope_id: int, *, now: datetime | None = None) -> str:
    """e.g. ORD-42-1718000000000-3fa1; the random tail keeps same-millisecond numbers apart."""
    return f'{prefix}-{scope_id}-{_epoch_millis(now)}-{secrets.token_hex(2)}'


def indent_number(site_id: int, *, now: datetime | None = None) -> str:
    return document_number('IND', site_id, now=now)


def order_number(indent_id: int, *, now: datetime | None = None) -> str:
    return document_number('ORD', indent_id, now=now)


def receipt_number(order_id: int, *, now: datetime | None = None) -> str:
    return document_number('REC', order_id, now=now)
