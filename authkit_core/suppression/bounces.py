"""
Bounce Handler
==============
Processes SES-style bounce and complaint notifications and escalates
repeated delivery failures to the denylist.

Policy:
    - Permanent bounce: recorded; the second one blocks permanently
    - Complaint: recorded and blocks permanently on first occurrence
    - Transient bounce: recorded, never escalates

Notifications are delivered at least once. Records are keyed by
(identifier hash, timestamp, message id) so redelivery is a no-op.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

import structlog

from ..errors import AuthKitError, StorageError
from ..identifier import Identifier
from ..metrics import DELIVERY_FEEDBACK
from .models import BounceRecord, BounceType, ComplaintRecord

if TYPE_CHECKING:
    from ..stores.base import BounceStore, DenylistStore

logger = structlog.get_logger(__name__)

PERMANENT_BOUNCE_THRESHOLD = 2


@dataclass
class ProcessBounceResult:
    processed: bool
    blocked_identifiers: List[str] = field(default_factory=list)
    recorded: int = 0
    duplicates: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class BounceStats:
    bounce_count: int
    permanent_bounce_count: int
    complaint_count: int
    last_bounce_at: Optional[datetime] = None
    last_complaint_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bounce_count": self.bounce_count,
            "permanent_bounce_count": self.permanent_bounce_count,
            "complaint_count": self.complaint_count,
            "last_bounce_at": self.last_bounce_at.isoformat() if self.last_bounce_at else None,
            "last_complaint_at": self.last_complaint_at.isoformat() if self.last_complaint_at else None,
        }


def parse_timestamp(value: str) -> datetime:
    """Parse an SES ISO-8601 timestamp (``2024-05-01T12:00:00.000Z``) as UTC."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class BounceHandler:
    """
    Usage:
        handler = BounceHandler(InMemoryBounceStore(), InMemoryDenylistStore())
        result = await handler.process_notification(json.loads(sns_message))
    """

    def __init__(
        self,
        bounce_store: "BounceStore",
        denylist_store: "DenylistStore",
        permanent_bounce_threshold: int = PERMANENT_BOUNCE_THRESHOLD,
    ):
        self.bounce_store = bounce_store
        self.denylist_store = denylist_store
        self.permanent_bounce_threshold = permanent_bounce_threshold

    async def process_notification(self, event: Dict[str, Any]) -> ProcessBounceResult:
        """
        Process one notification covering any number of recipients.

        A malformed notification returns ``processed=False``. Failures for
        individual recipients are collected in ``errors`` without stopping
        the others.
        """
        notification_type = event.get("notificationType")
        result = ProcessBounceResult(processed=True)

        try:
            message_id = event["mail"]["messageId"]
            if notification_type == "Bounce":
                bounce = event["bounce"]
                bounce_type = BounceType(bounce["bounceType"])
                timestamp = parse_timestamp(bounce["timestamp"])
                recipients = [r["emailAddress"] for r in bounce["bouncedRecipients"]]
            elif notification_type == "Complaint":
                complaint = event["complaint"]
                timestamp = parse_timestamp(complaint["timestamp"])
                recipients = [r["emailAddress"] for r in complaint["complainedRecipients"]]
            else:
                logger.info("notification_ignored", notification_type=notification_type)
                return result
        except (KeyError, TypeError, ValueError) as e:
            logger.error("notification_malformed", notification_type=notification_type, error=str(e))
            return ProcessBounceResult(processed=False, errors=[f"Malformed notification: {e}"])

        for recipient in recipients:
            try:
                identifier = Identifier.create(recipient)
                if notification_type == "Bounce":
                    record = BounceRecord(
                        identifier_hash=identifier.hash,
                        bounce_type=bounce_type,
                        message_id=message_id,
                        timestamp=timestamp,
                        bounce_sub_type=bounce.get("bounceSubType"),
                    )
                    recorded, blocked = await self.handle_bounce(record)
                else:
                    record = ComplaintRecord(
                        identifier_hash=identifier.hash,
                        message_id=message_id,
                        timestamp=timestamp,
                        complaint_type=complaint.get("complaintFeedbackType"),
                    )
                    recorded, blocked = await self.handle_complaint(record)
            except (AuthKitError, StorageError) as e:
                result.errors.append(f"Failed to process {notification_type.lower()} for recipient: {e}")
                logger.error("recipient_processing_failed", notification_type=notification_type, error=str(e))
                continue

            if recorded:
                result.recorded += 1
            else:
                result.duplicates += 1
            if blocked:
                result.blocked_identifiers.append(identifier.value)

        return result

    async def handle_bounce(self, record: BounceRecord) -> Tuple[bool, bool]:
        """Record a bounce and escalate. Returns (newly recorded, identifier blocked)."""
        recorded = await self.bounce_store.record_bounce(record)
        DELIVERY_FEEDBACK.labels(
            kind=f"bounce_{record.bounce_type.value.lower()}" if recorded else "duplicate"
        ).inc()

        if record.bounce_type != BounceType.PERMANENT:
            return recorded, False

        permanent = await self.bounce_store.get_bounce_count(record.identifier_hash, BounceType.PERMANENT)
        if permanent < self.permanent_bounce_threshold:
            return recorded, False

        await self.denylist_store.add(
            record.identifier_hash,
            f"Permanent bounce: {record.bounce_sub_type or 'unknown'}",
            None,
        )
        logger.warning(
            "identifier_blocked_for_bounces",
            identifier_hash=record.identifier_hash,
            permanent_bounces=permanent,
        )
        return recorded, True

    async def handle_complaint(self, record: ComplaintRecord) -> Tuple[bool, bool]:
        """Record a complaint and block permanently. Returns (newly recorded, blocked)."""
        recorded = await self.bounce_store.record_complaint(record)
        DELIVERY_FEEDBACK.labels(kind="complaint" if recorded else "duplicate").inc()

        await self.denylist_store.add(
            record.identifier_hash,
            f"Complaint: {record.complaint_type or 'spam'}",
            None,
        )
        logger.warning("identifier_blocked_for_complaint", identifier_hash=record.identifier_hash)
        return recorded, True

    async def get_bounce_stats(self, identifier: Identifier) -> BounceStats:
        bounce_count = await self.bounce_store.get_bounce_count(identifier.hash)
        permanent = await self.bounce_store.get_bounce_count(identifier.hash, BounceType.PERMANENT)
        complaint_count = await self.bounce_store.get_complaint_count(identifier.hash)
        last_bounce = await self.bounce_store.get_last_bounce(identifier.hash)
        last_complaint = await self.bounce_store.get_last_complaint(identifier.hash)

        return BounceStats(
            bounce_count=bounce_count,
            permanent_bounce_count=permanent,
            complaint_count=complaint_count,
            last_bounce_at=last_bounce.timestamp if last_bounce else None,
            last_complaint_at=last_complaint.timestamp if last_complaint else None,
        )
