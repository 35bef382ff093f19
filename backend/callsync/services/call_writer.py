import enum
import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from callsync.core.timeutil import parse_datetime
from callsync.errors import RecordError
from callsync.models import CallDirection, CallRecord, DeletedCallTombstone
from callsync.services.provider_client import DEFAULT_SCHEMA, ProviderSchema

logger = logging.getLogger(__name__)

MAX_DURATION_SECONDS = 2_147_483_647


class PersistOutcome(enum.Enum):
    SAVED = "saved"
    DUPLICATE = "duplicate"
    TOMBSTONED = "tombstoned"


@dataclass
class MappedCall:
    external_call_id: str
    direction: CallDirection
    started_at: datetime
    agent_external_id: Optional[str] = None
    contact_name: Optional[str] = None
    from_number: Optional[str] = None
    to_number: Optional[str] = None
    status: Optional[str] = None
    duration_seconds: int = 0
    cost: Decimal = Decimal("0")
    summary: Optional[str] = None
    transcript: Optional[str] = None
    recording_reference: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    ended_at: Optional[datetime] = None
    message_id: Optional[str] = None
    location_id: Optional[str] = None
    is_test_call: bool = False
    raw_payload: Dict[str, Any] = field(default_factory=dict)


def infer_direction(value: Any) -> CallDirection:
    if value and str(value).lower() in ("outbound", "outgoing"):
        return CallDirection.OUTBOUND
    return CallDirection.INBOUND


def optional_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, (list, dict)):
        return json.dumps(value)
    return str(value)


def _non_negative_int(value: Any, name: str, call_id: str) -> int:
    if value in (None, ""):
        return 0
    try:
        number = int(float(value))
    except (TypeError, ValueError, OverflowError) as exc:
        raise RecordError(f"{name} is not numeric: {value!r}", call_id) from exc
    if number < 0:
        raise RecordError(f"{name} is negative: {number}", call_id)
    return number


def _non_negative_decimal(value: Any, name: str, call_id: str) -> Decimal:
    if value in (None, ""):
        return Decimal("0")
    try:
        number = Decimal(str(value))
    except InvalidOperation as exc:
        raise RecordError(f"{name} is not numeric: {value!r}", call_id) from exc
    if not number.is_finite() or number < 0:
        raise RecordError(f"{name} is invalid: {number}", call_id)
    return number


def _tags(value: Any, call_id: str) -> List[str]:
    if value in (None, ""):
        return []
    if not isinstance(value, list):
        raise RecordError(f"tags must be a list, got {type(value).__name__}", call_id)
    return list(dict.fromkeys(str(tag) for tag in value if tag not in (None, "")))


def _duration(value: Any, call_id: str) -> int:
    number = _non_negative_int(value, "duration", call_id)
    if number > MAX_DURATION_SECONDS:
        raise RecordError(f"duration is out of range: {number}", call_id)
    return number


def _flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes")


def _ended_at(value: Any, call_id: str) -> Optional[datetime]:
    if value in (None, ""):
        return None
    try:
        return parse_datetime(value)
    except (TypeError, ValueError):
        logger.warning("Call %s has an unparseable end time %r; storing none", call_id, value)
        return None


def map_call(
    payload: Dict[str, Any],
    schema: ProviderSchema = DEFAULT_SCHEMA,
    default_location_id: Optional[str] = None,
) -> MappedCall:
    call_id = payload.get(schema.id_field)
    if call_id in (None, ""):
        raise RecordError("Missing provider call id")
    call_id = str(call_id)
    started = payload.get(schema.started_field)
    if not started:
        raise RecordError(f"Missing {schema.started_field}", call_id)
    try:
        started_at = parse_datetime(started)
    except (TypeError, ValueError) as exc:
        raise RecordError(f"Unparseable {schema.started_field}: {started!r}", call_id) from exc
    return MappedCall(
        external_call_id=call_id,
        direction=infer_direction(payload.get(schema.direction_field)),
        started_at=started_at,
        agent_external_id=optional_str(payload.get(schema.agent_field)),
        contact_name=optional_str(payload.get(schema.contact_field)),
        from_number=optional_str(payload.get(schema.from_field)),
        to_number=optional_str(payload.get(schema.to_field)),
        status=optional_str(payload.get(schema.status_field)),
        duration_seconds=_duration(payload.get(schema.duration_field), call_id),
        cost=_non_negative_decimal(payload.get(schema.cost_field), "cost", call_id),
        summary=optional_str(payload.get(schema.summary_field)),
        transcript=optional_str(payload.get(schema.transcript_field)),
        recording_reference=optional_str(payload.get(schema.recording_field)),
        tags=_tags(payload.get(schema.tags_field), call_id),
        ended_at=_ended_at(payload.get(schema.ended_field), call_id),
        message_id=optional_str(payload.get(schema.message_field)),
        location_id=optional_str(payload.get(schema.location_field)) or default_location_id,
        is_test_call=_flag(payload.get(schema.test_call_field)),
        raw_payload=payload,
    )


def is_tombstoned(db: Session, account_id: int, external_call_id: str) -> bool:
    return (
        db.query(DeletedCallTombstone.id)
        .filter(
            DeletedCallTombstone.account_id == account_id,
            DeletedCallTombstone.external_call_id == external_call_id,
        )
        .first()
        is not None
    )


class CallWriter:
    """Inserts accepted calls; never updates or deletes existing rows.

    Any store failure for one call is rolled back and raised as ``RecordError``
    so the run counts it and moves on to the next record.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def persist(
        self, account_id: int, call: MappedCall, agent_id: Optional[int] = None
    ) -> PersistOutcome:
        try:
            return self._persist(account_id, call, agent_id)
        except (SQLAlchemyError, OverflowError) as exc:
            self.db.rollback()
            raise RecordError(
                f"{type(exc).__name__}: {exc}".splitlines()[0], call.external_call_id
            ) from exc

    def _persist(self, account_id: int, call: MappedCall, agent_id: Optional[int]) -> PersistOutcome:
        existing = (
            self.db.query(CallRecord.id)
            .filter(
                CallRecord.account_id == account_id,
                CallRecord.external_call_id == call.external_call_id,
            )
            .first()
        )
        if existing:
            return PersistOutcome.DUPLICATE
        if is_tombstoned(self.db, account_id, call.external_call_id):
            logger.debug("Call %s was deleted by an admin; not re-importing", call.external_call_id)
            return PersistOutcome.TOMBSTONED
        self.db.add(
            CallRecord(
                account_id=account_id,
                external_call_id=call.external_call_id,
                agent_id=agent_id,
                agent_external_id=call.agent_external_id,
                direction=call.direction,
                contact_name=call.contact_name,
                from_number=call.from_number,
                to_number=call.to_number,
                status=call.status,
                duration_seconds=call.duration_seconds,
                cost=call.cost,
                started_at=call.started_at,
                ended_at=call.ended_at,
                summary=call.summary,
                transcript=call.transcript,
                recording_reference=call.recording_reference,
                message_id=call.message_id,
                location_id=call.location_id,
                is_test_call=call.is_test_call,
                tags=call.tags,
                raw_payload=call.raw_payload,
            )
        )
        self.db.commit()
        return PersistOutcome.SAVED
