"""Explicit per-call context: who is acting and what "today" is."""

from dataclasses import dataclass, field
from datetime import date


@dataclass(frozen=True)
class RequestContext:
    owner_id: str
    today: date = field(default_factory=date.today)
