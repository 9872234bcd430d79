"""
Bulk provisioning use case: upload bytes -> ProvisioningOutcome.

The raw record stream is read to the end before anything is committed, so a
container failure (broken workbook, undecodable JSON) aborts the request
without leaving a partially committed batch behind.
"""
from __future__ import annotations

from typing import List, Union
import logging

from identity_access.errors import NoValidRecords

from .commit import CommitEngine
from .parsers import parser_for
from .records import CreationRequest, ProvisioningOutcome, RawRecord, Rejection
from .validation import normalize_record

logger = logging.getLogger("roster.provisioning")


def read_records(data: bytes, extension: str) -> List[RawRecord]:
    parser = parser_for(extension)
    records = list(parser.parse(data))
    if not records:
        raise NoValidRecords("No valid users found in file")
    logger.info("Upload parsed format=%s records=%d", parser.extension, len(records))
    return records


def preview_upload(data: bytes, extension: str) -> List[Union[CreationRequest, Rejection]]:
    """Parse and validate without touching the store (dry run)."""
    return [normalize_record(r) for r in read_records(data, extension)]


class ProvisioningService:
    def __init__(self, engine: CommitEngine) -> None:
        self.engine = engine

    def register_bulk(self, data: bytes, extension: str, actor: str) -> ProvisioningOutcome:
        records = read_records(data, extension)
        return self.engine.commit((normalize_record(r) for r in records), actor)

    def register_individual(self, fields: dict, actor: str) -> dict:
        return self.engine.register_individual(fields, actor)
