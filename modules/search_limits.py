"""
Search-credit ledger.
Free visitors get a fixed number of searches per IP address; verified
supporters search without limit.
"""

import logging
from dataclasses import dataclass, asdict
from datetime import datetime, time, timezone
from typing import Optional, Dict, Any

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError

from config import Config
from modules.storage import Database, SearchRecord, StorageError, Supporter, as_utc, utcnow
from modules.visitor import Visitor

logger = logging.getLogger(__name__)

CHECK = "check"
CONSUME = "consume"


class SearchLimitError(Exception):
    """Base exception for search-limit errors."""
    pass


class SearchLimitExceeded(SearchLimitError):
    """Raised when a free visitor has no search credits left."""

    def __init__(self, status: "QuotaStatus"):
        super().__init__(status.message)
        self.status = status


@dataclass
class QuotaStatus:
    can_search: bool
    remaining: Optional[int]
    total: Optional[int]
    is_premium: bool
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _start_of_utc_day(now: datetime) -> datetime:
    return datetime.combine(now.date(), time.min, tzinfo=timezone.utc)


class SearchLimiter:
    """Checks and consumes search credits for a visitor."""

    def __init__(
        self,
        db: Database,
        limit: Optional[int] = None,
        reset_policy: Optional[str] = None,
        fail_open: Optional[bool] = None
    ):
        """
        Args:
            db: Database holding the ledger
            limit: Free searches per IP (defaults to Config.FREE_SEARCH_LIMIT)
            reset_policy: 'lifetime' or 'daily'
            fail_open: Allow searching when the ledger is unreachable
        """
        self.db = db
        self.limit = Config.FREE_SEARCH_LIMIT if limit is None else limit
        self.reset_policy = reset_policy or Config.QUOTA_RESET_POLICY
        self.fail_open = Config.QUOTA_FAIL_OPEN if fail_open is None else fail_open

        if self.reset_policy not in ("lifetime", "daily"):
            raise ValueError(f"Unknown reset policy: {self.reset_policy}")

    # ------------------------------------------------------------------
    # Premium lookup
    # ------------------------------------------------------------------

    def is_premium(self, visitor: Visitor) -> bool:
        """True if a verified supporter row matches the visitor's IP, UUID or email."""
        keys = []
        if visitor.ip:
            keys.append(Supporter.ip_address == visitor.ip)
        if visitor.uuid:
            keys.append(Supporter.visitor_uuid == visitor.uuid)
        if visitor.email:
            keys.append(Supporter.email == visitor.email)

        if not keys:
            return False

        with self.db.session_scope() as session:
            supporter_id = session.execute(
                select(Supporter.id)
                .where(Supporter.verified.is_(True))
                .where(Supporter.unlimited_searches.is_(True))
                .where(or_(*keys))
                .limit(1)
            ).scalar_one_or_none()

        return supporter_id is not None

    # ------------------------------------------------------------------
    # Ledger operations
    # ------------------------------------------------------------------

    def _premium_status(self) -> QuotaStatus:
        return QuotaStatus(
            can_search=True,
            remaining=None,
            total=None,
            is_premium=True,
            message="Premium user"
        )

    def _fallback_status(self, error: Exception) -> QuotaStatus:
        if not self.fail_open:
            raise error
        logger.warning("Search validation failed, allowing search: %s", error)
        return QuotaStatus(
            can_search=True,
            remaining=max(0, self.limit - 1),
            total=self.limit,
            is_premium=False,
            message="Default fallback - validation failed"
        )

    def _effective_count(self, record: Optional[SearchRecord], now: datetime) -> int:
        if record is None:
            return 0
        if self.reset_policy == "daily":
            last = as_utc(record.last_search)
            if last is None or last < _start_of_utc_day(now):
                return 0
        return record.search_count

    def check(self, visitor: Visitor) -> QuotaStatus:
        """
        Report the visitor's credits without using one.

        Args:
            visitor: Resolved visitor

        Returns:
            QuotaStatus
        """
        try:
            if self.is_premium(visitor):
                return self._premium_status()

            with self.db.session_scope() as session:
                record = session.get(SearchRecord, visitor.ip)
                count = self._effective_count(record, utcnow())

        except StorageError as e:
            return self._fallback_status(e)

        remaining = max(0, self.limit - count)
        return QuotaStatus(
            can_search=remaining > 0,
            remaining=remaining,
            total=self.limit,
            is_premium=False,
            message="Credits checked" if remaining > 0 else "Search limit reached"
        )

    def consume(self, visitor: Visitor) -> QuotaStatus:
        """
        Use one search credit.

        The increment is a conditional UPDATE (count < limit), so concurrent
        requests from the same IP cannot push the counter past the limit.

        Args:
            visitor: Resolved visitor

        Returns:
            QuotaStatus (can_search False when the limit is reached)
        """
        try:
            if self.is_premium(visitor):
                return self._premium_status()

            new_count = self._increment(visitor)

        except StorageError as e:
            return self._fallback_status(e)

        if new_count is None:
            logger.info("✗ Search limit reached for %s", visitor.ip)
            return QuotaStatus(
                can_search=False,
                remaining=0,
                total=self.limit,
                is_premium=False,
                message="You have reached the limit of free searches."
            )

        logger.info("✓ Search recorded for %s (%d/%d)", visitor.ip, new_count, self.limit)
        return QuotaStatus(
            can_search=True,
            remaining=max(0, self.limit - new_count),
            total=self.limit,
            is_premium=False,
            message="Search recorded"
        )

    def _increment(self, visitor: Visitor, attempts: int = 2) -> Optional[int]:
        """Returns the new count, or None when the visitor is out of credits."""
        if self.limit <= 0:
            return None

        for _ in range(attempts):
            now = utcnow()
            try:
                with self.db.session_scope() as session:
                    if self.reset_policy == "daily":
                        reset = session.execute(
                            update(SearchRecord)
                            .where(SearchRecord.ip_address == visitor.ip)
                            .where(or_(SearchRecord.last_search.is_(None),
                                       SearchRecord.last_search < _start_of_utc_day(now)))
                            .values(search_count=1, last_search=now, visitor_uuid=visitor.uuid)
                        )
                        if reset.rowcount == 1:
                            return 1

                    bumped = session.execute(
                        update(SearchRecord)
                        .where(SearchRecord.ip_address == visitor.ip)
                        .where(SearchRecord.search_count < self.limit)
                        .values(search_count=SearchRecord.search_count + 1,
                                last_search=now,
                                visitor_uuid=visitor.uuid)
                    )
                    if bumped.rowcount == 1:
                        return session.execute(
                            select(SearchRecord.search_count)
                            .where(SearchRecord.ip_address == visitor.ip)
                        ).scalar_one()

                    if session.get(SearchRecord, visitor.ip) is not None:
                        return None

                    session.add(SearchRecord(
                        ip_address=visitor.ip,
                        search_count=1,
                        last_search=now,
                        visitor_uuid=visitor.uuid
                    ))
                    session.flush()
                    return 1

            except IntegrityError:
                # Another request created the row first; go round again as an update
                logger.debug("Concurrent first search for %s, retrying", visitor.ip)

        raise StorageError(f"Could not record search for {visitor.ip}")

    def validate(self, visitor: Visitor, mode: str = CHECK) -> QuotaStatus:
        """Dispatch on 'check' / 'consume' (anything else consumes)."""
        if mode == CHECK:
            return self.check(visitor)
        return self.consume(visitor)

    def require_credit(self, visitor: Visitor) -> QuotaStatus:
        """
        Consume a credit or raise.

        Raises:
            SearchLimitExceeded: If the visitor has no credits left
        """
        status = self.consume(visitor)
        if not status.can_search:
            raise SearchLimitExceeded(status)
        return status
