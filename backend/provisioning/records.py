"""
Value types flowing through the bulk provisioning pipeline.

RawRecord  -> loosely typed row as produced by a format parser
CreationRequest -> normalized, validated creation input
Rejection  -> per-record failure (never fatal to the batch)
ProvisioningOutcome -> ordered created/errors lists returned to the caller
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Union

SOURCES = ("xlsx", "xls", "csv", "json", "pdf")

FieldValue = Union[str, int, float, bool, None]


@dataclass(frozen=True)
class RawRecord:
    source: str
    position: int
    fields: Mapping[str, FieldValue]


@dataclass(frozen=True)
class CreationRequest:
    name: str
    user_id: str
    roll_number: str
    password: str = field(repr=False)
    role: str
    batch: Optional[str] = None
    semester: object = None
    position: int = 0


@dataclass(frozen=True)
class Rejection:
    key: str
    code: str
    message: str
    position: int = 0

    def to_dict(self) -> Dict[str, object]:
        return {"key": self.key, "code": self.code, "message": self.message, "position": self.position}


@dataclass
class ProvisioningOutcome:
    created: List[dict] = field(default_factory=list)
    errors: List[Rejection] = field(default_factory=list)
    received: int = 0

    def to_dict(self) -> Dict[str, object]:
        return {
            "created": list(self.created),
            "errors": [e.to_dict() for e in self.errors],
            "received": self.received,
            "created_count": len(self.created),
            "rejected_count": len(self.errors),
            "atomic": False,
        }
