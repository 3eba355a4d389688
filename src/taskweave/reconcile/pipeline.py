"""Stage tracking for one reconciliation, from raw response to persisted graph."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from taskweave.errors import DataIntegrityWarning, ReconcileError
from taskweave.log import Logger, NullLogger
from taskweave.reconcile.extract import extract_json


class Stage(str, Enum):
    RECEIVED_RAW = "received_raw"
    EXTRACTED = "extracted"
    PARSED = "parsed"
    SCHEMA_VALIDATED = "schema_validated"
    CORRECTED = "corrected"
    MERGED = "merged"
    PERSISTED = "persisted"


# Only these transitions may fail.
FALLIBLE_STAGES = (Stage.EXTRACTED, Stage.PARSED, Stage.SCHEMA_VALIDATED)


@dataclass
class Reconciliation:
    """Mutable record of how far a response got.

    Usage::

        rec = Reconciliation(raw, logger=log)
        items = rec.validate(validate_task_batch)
        ...
        rec.advance(Stage.MERGED)
    """

    raw: Any
    logger: Logger = field(default_factory=NullLogger)
    stage: Stage = Stage.RECEIVED_RAW
    payload: Any = None
    warnings: list[DataIntegrityWarning] = field(default_factory=list)

    def advance(self, stage: Stage) -> None:
        self.logger.debug(f"reconcile: {self.stage.value} -> {stage.value}")
        self.stage = stage

    def parse(self) -> Any:
        """Structured results skip extraction; text goes through :func:`extract_json`."""
        if isinstance(self.raw, str):
            try:
                extracted = extract_json(self.raw, logger=self.logger)
            except ReconcileError:
                self.logger.debug(f"reconcile failed at {Stage.EXTRACTED.value}")
                raise
            self.advance(Stage.EXTRACTED)
            self.payload = extracted.value
        else:
            self.payload = self.raw
        self.advance(Stage.PARSED)
        return self.payload

    def validate(self, validator: Callable[[Any], Any]) -> Any:
        if self.stage is Stage.RECEIVED_RAW:
            self.parse()
        try:
            self.payload = validator(self.payload)
        except ReconcileError:
            self.logger.debug(f"reconcile failed at {Stage.SCHEMA_VALIDATED.value}")
            raise
        self.advance(Stage.SCHEMA_VALIDATED)
        return self.payload

    def corrected(self, warnings: list[DataIntegrityWarning]) -> None:
        self.warnings.extend(warnings)
        self.advance(Stage.CORRECTED)
