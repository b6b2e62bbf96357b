"""Persisted renewal history.

One JSON file per renewal (``<history.path>/<id>.history.json``) holding
a list of result records, oldest first, bounded to
``history.max_entries``.

Older files stored a flat ``Thumbprints`` list and an ``ExpireDate``
instead of per-order results.  Such records are upgraded when read
(:func:`upgrade_record`); when ``history.write_legacy_fields`` is set
the flat fields are written next to the structured ones so older
readers keep working (:func:`downgrade_record`).  In memory there is
only ever one shape, :class:`RenewResult`.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from acmerenew.models.order import MAIN_ORDER
from acmerenew.models.result import OrderResult, RenewResult
from acmerenew.store.base import safe_file_name

if TYPE_CHECKING:
    from acmerenew.config.settings import HistorySettings
    from acmerenew.models.renewal import Renewal

log = logging.getLogger(__name__)

LEGACY_ORDER = "legacy"


def _parse_date(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    # legacy files stored naive UTC timestamps
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _format_date(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


# ---------------------------------------------------------------------------
# Serialization boundary
# ---------------------------------------------------------------------------


def upgrade_record(record: dict[str, Any]) -> dict[str, Any]:
    """Convert a legacy record to the structured shape.

    The first legacy thumbprint becomes order ``main``, any others
    become ``legacy``.  A legacy record without thumbprints yields a
    single ``main`` order carrying the record's expiry and verdict.
    Structured records are returned unchanged.
    """
    if "OrderResults" in record:
        return record
    upgraded = {k: v for k, v in record.items() if k not in ("Thumbprints", "Thumbprint")}
    thumbprints = record.get("Thumbprints")
    if thumbprints is None and record.get("Thumbprint"):
        thumbprints = [record["Thumbprint"]]
    thumbprints = thumbprints or [None]
    upgraded["OrderResults"] = [
        {
            "Name": MAIN_ORDER if index == 0 else LEGACY_ORDER,
            "Thumbprint": thumb,
            "ExpireDate": record.get("ExpireDate"),
            "Success": record.get("Success"),
        }
        for index, thumb in enumerate(thumbprints)
    ]
    if "ErrorMessage" in record and "ErrorMessages" not in record:
        message = upgraded.pop("ErrorMessage")
        upgraded["ErrorMessages"] = [message] if message else []
    log.debug("Upgraded legacy history record from %s", record.get("Date"))
    return upgraded


def downgrade_record(record: dict[str, Any]) -> dict[str, Any]:
    """Add the flat legacy fields to a structured record."""
    downgraded = dict(record)
    downgraded["Thumbprints"] = [
        o["Thumbprint"] for o in record.get("OrderResults", []) if o.get("Thumbprint")
    ]
    return downgraded


def result_to_dict(result: RenewResult) -> dict[str, Any]:
    return {
        "Date": _format_date(result.date),
        "Success": result.success,
        "Abort": result.abort,
        "ExpireDate": _format_date(result.expire_date),
        "OrderResults": [
            {
                "Name": o.name,
                "Thumbprint": o.thumbprint,
                "ExpireDate": _format_date(o.expire_date),
                "Success": o.success,
                "Error": o.error,
            }
            for o in result.order_results
        ],
        "ErrorMessages": list(result.error_messages),
    }


def result_from_dict(record: dict[str, Any]) -> RenewResult:
    record = upgrade_record(record)
    return RenewResult(
        date=_parse_date(record.get("Date")) or datetime.now(UTC),
        success=record.get("Success"),
        abort=bool(record.get("Abort", False)),
        order_results=tuple(
            OrderResult(
                name=o.get("Name") or MAIN_ORDER,
                thumbprint=o.get("Thumbprint"),
                expire_date=_parse_date(o.get("ExpireDate")),
                success=o.get("Success"),
                error=o.get("Error"),
            )
            for o in record.get("OrderResults", [])
        ),
        error_messages=tuple(record.get("ErrorMessages") or ()),
    )


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class RenewalHistory:
    """Reads and appends per-renewal result history files."""

    def __init__(self, settings: HistorySettings) -> None:
        self._settings = settings
        self._path = Path(settings.path)

    def file_for(self, renewal: Renewal) -> Path:
        return self._path / f"{safe_file_name(renewal.id)}.history.json"

    def load(self, renewal: Renewal) -> list[RenewResult]:
        """All recorded results, oldest first (empty if none)."""
        path = self.file_for(renewal)
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return []
        except (OSError, ValueError) as exc:
            log.warning("Unable to read history %s: %s", path, exc)
            return []
        return [result_from_dict(r) for r in raw]

    def append(self, renewal: Renewal, result: RenewResult) -> list[RenewResult]:
        """Append *result*, trim to ``max_entries`` and write atomically."""
        history = [*self.load(renewal), result]
        if self._settings.max_entries > 0:
            history = history[-self._settings.max_entries :]
        records = [result_to_dict(r) for r in history]
        if self._settings.write_legacy_fields:
            records = [downgrade_record(r) for r in records]

        self._path.mkdir(parents=True, exist_ok=True)
        target = self.file_for(renewal)
        fd, tmp = tempfile.mkstemp(dir=self._path, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(records, f, indent=2)
            Path(tmp).replace(target)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        log.debug("Saved %d history record(s) to %s", len(records), target)
        return history

    def last_success(self, renewal: Renewal) -> RenewResult | None:
        for result in reversed(self.load(renewal)):
            if result.success and not result.abort:
                return result
        return None
