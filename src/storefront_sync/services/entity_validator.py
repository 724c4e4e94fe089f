"""Structural validation of incoming batches."""

from dataclasses import dataclass, field
from typing import Any

import structlog
from pydantic import ValidationError as PydanticValidationError

from storefront_sync.services.payloads import PAYLOAD_MODELS, EntityKind, Payload

logger = structlog.get_logger()

_REDACTED_KEYS = frozenset({"email"})


@dataclass
class ValidatedBatch:
    """Records that parsed, plus how many did not."""

    valid: list[Payload] = field(default_factory=list)
    skipped_count: int = 0


def _redact(record: Any) -> Any:
    if not isinstance(record, dict):
        return record
    return {k: ("[redacted]" if k in _REDACTED_KEYS else v) for k, v in record.items()}


class EntityValidator:
    """Splits a raw batch into parsed payloads and a skipped count.

    A record that fails to parse is logged and skipped; it never aborts the
    batch.
    """

    def validate(
        self,
        kind: EntityKind,
        records: list[Any],
        tenant_id: str | None = None,
    ) -> ValidatedBatch:
        model = PAYLOAD_MODELS[kind]
        batch = ValidatedBatch()

        for raw in records:
            try:
                batch.valid.append(model.model_validate(raw))
            except PydanticValidationError as e:
                batch.skipped_count += 1
                logger.warning(
                    f"Skipping invalid {kind.singular}: failed validation",
                    tenant_id=tenant_id,
                    record=_redact(raw),
                    invalid_fields=[
                        ".".join(str(part) for part in err["loc"]) for err in e.errors()
                    ],
                )

        return batch
