from datetime import timedelta
from typing import Optional

import structlog
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from models import db
from models.rate_limit_entry import RateLimitEntry
from utils.audit import log_event
from utils.clock import utcnow

logger = structlog.get_logger(__name__)

LOGIN = "LOGIN"
MFA_REQUEST = "MFA_REQUEST"
MFA_VERIFY = "MFA_VERIFY"
MFA_RESEND = "MFA_RESEND"


class RateLimiter:
    """
    Rolling-window attempt limiter keyed by (client identifier, attempt type).

    The row for a key is created on first sight in its own commit; after that
    every counter change is a single conditional UPDATE so concurrent workers
    never lose increments.
    """

    def __init__(self, config, session=None, clock=utcnow):
        self.config = config
        self.session = session if session is not None else db.session
        self.clock = clock

    # ----- public API -----

    def can_attempt(self, client_id: str, attempt_type: str, max_attempts: Optional[int] = None) -> bool:
        now = self.clock()
        limit = max_attempts or self.max_attempts_for(attempt_type)
        row = self._get_or_create(client_id, attempt_type, now)

        if self._is_blocked(row, now):
            return False

        self._roll_window(row, now)

        if row.attempt_count >= limit:
            self._block(row, now, f"Exceeded {limit} {attempt_type} attempts")
            return False
        return True

    def record_attempt(self, client_id: str, attempt_type: str, succeeded: bool, commit: bool = True) -> None:
        """
        Counts one attempt. With commit=False the updates join the caller's
        transaction; the key's row must already exist (can_attempt creates it).
        """
        now = self.clock()
        row = self._get_or_create(client_id, attempt_type, now)
        if not self._is_blocked(row, now):
            self._roll_window(row, now, commit=commit)

        outcome_col = RateLimitEntry.successful_count if succeeded else RateLimitEntry.failed_count
        self._query(row).update(
            {
                RateLimitEntry.attempt_count: RateLimitEntry.attempt_count + 1,
                outcome_col: outcome_col + 1,
                RateLimitEntry.last_attempt: now,
                RateLimitEntry.updated_at: now,
            },
            synchronize_session=False,
        )
        self._finish(commit)
        self.session.refresh(row)

        limit = self.max_attempts_for(attempt_type)
        if not succeeded and row.failed_count >= limit and not self._is_blocked(row, now):
            self._block(row, now, f"{row.failed_count} failed {attempt_type} attempts", commit=commit)

    def get_remaining_attempts(self, client_id: str, attempt_type: str) -> int:
        now = self.clock()
        limit = self.max_attempts_for(attempt_type)
        row = self._find(client_id, attempt_type)
        if row is None:
            return limit
        if self._is_blocked(row, now):
            return 0
        if row.is_blocked or self._window_elapsed(row, now):
            return limit
        return max(0, limit - row.attempt_count)

    def get_time_until_reset(self, client_id: str, attempt_type: str) -> Optional[timedelta]:
        now = self.clock()
        row = self._find(client_id, attempt_type)
        if row is None:
            return None
        if self._is_blocked(row, now):
            return row.blocked_until - now
        if row.is_blocked:
            return None
        window_end = row.first_attempt + self._window()
        if window_end <= now:
            return None
        return window_end - now

    def reset_rate_limit(self, client_id: str, attempt_type: str) -> bool:
        now = self.clock()
        updated = (
            self.session.query(RateLimitEntry)
            .filter_by(client_identifier=client_id, attempt_type=attempt_type)
            .update(
                {
                    RateLimitEntry.attempt_count: 0,
                    RateLimitEntry.successful_count: 0,
                    RateLimitEntry.failed_count: 0,
                    RateLimitEntry.first_attempt: now,
                    RateLimitEntry.is_blocked: False,
                    RateLimitEntry.blocked_until: None,
                    RateLimitEntry.block_reason: None,
                    RateLimitEntry.violation_count: 0,
                    RateLimitEntry.updated_at: now,
                },
                synchronize_session=False,
            )
        )
        if updated:
            log_event(
                "RATE_LIMIT_RESET",
                description=f"Rate limit reset for {attempt_type}",
                metadata={"client": client_id, "attempt_type": attempt_type},
                session=self.session,
            )
        self.session.commit()
        return bool(updated)

    def cleanup(self) -> int:
        """Deletes rows idle for the retention period and not currently blocked."""
        now = self.clock()
        cutoff = now - timedelta(days=self.config.get("RATE_LIMIT_RETENTION_DAYS", 7))
        deleted = (
            self.session.query(RateLimitEntry)
            .filter(RateLimitEntry.last_attempt < cutoff)
            .filter(or_(RateLimitEntry.blocked_until.is_(None), RateLimitEntry.blocked_until < now))
            .delete(synchronize_session=False)
        )
        self.session.commit()
        return deleted

    def max_attempts_for(self, attempt_type: str) -> int:
        limits = self.config.get("RATE_LIMIT_MAX_ATTEMPTS") or {}
        return limits.get(attempt_type, self.config.get("RATE_LIMIT_DEFAULT_MAX_ATTEMPTS", 5))

    # ----- internals -----

    def _finish(self, commit):
        if commit:
            self.session.commit()

    def _window(self) -> timedelta:
        return timedelta(minutes=self.config.get("RATE_LIMIT_WINDOW_MINUTES", 15))

    def _find(self, client_id, attempt_type):
        return (
            self.session.query(RateLimitEntry)
            .filter_by(client_identifier=client_id, attempt_type=attempt_type)
            .first()
        )

    def _query(self, row):
        return self.session.query(RateLimitEntry).filter(RateLimitEntry.id == row.id)

    def _get_or_create(self, client_id, attempt_type, now):
        row = self._find(client_id, attempt_type)
        if row is not None:
            return row

        row = RateLimitEntry(
            client_identifier=client_id,
            attempt_type=attempt_type,
            attempt_count=0,
            successful_count=0,
            failed_count=0,
            first_attempt=now,
            last_attempt=now,
            is_blocked=False,
            violation_count=0,
            created_at=now,
            updated_at=now,
        )
        self.session.add(row)
        try:
            self.session.commit()
        except IntegrityError:
            # another worker inserted the same key first
            self.session.rollback()
            row = self._find(client_id, attempt_type)
        return row

    @staticmethod
    def _is_blocked(row, now) -> bool:
        return bool(row.is_blocked and row.blocked_until and row.blocked_until > now)

    def _window_elapsed(self, row, now) -> bool:
        return now >= row.first_attempt + self._window()

    def _roll_window(self, row, now, commit=True):
        """Starts a fresh window once the old one or a block has run out."""
        if not row.is_blocked and not self._window_elapsed(row, now):
            return

        violations = row.violation_count
        if row.blocked_until is None or now >= row.blocked_until + self._window():
            violations = 0

        self._query(row).filter(RateLimitEntry.first_attempt == row.first_attempt).update(
            {
                RateLimitEntry.attempt_count: 0,
                RateLimitEntry.successful_count: 0,
                RateLimitEntry.failed_count: 0,
                RateLimitEntry.first_attempt: now,
                RateLimitEntry.is_blocked: False,
                RateLimitEntry.block_reason: None,
                RateLimitEntry.violation_count: violations,
                RateLimitEntry.updated_at: now,
            },
            synchronize_session=False,
        )
        self._finish(commit)
        self.session.refresh(row)

    def _block_minutes(self, violations: int) -> float:
        base = self.config.get("RATE_LIMIT_BLOCK_MINUTES", 30)
        multiplier = self.config.get("RATE_LIMIT_BACKOFF_MULTIPLIER", 2.0)
        cap = self.config.get("RATE_LIMIT_MAX_BLOCK_MINUTES", 24 * 60)
        return min(base * (multiplier ** max(violations - 1, 0)), cap)

    def _block(self, row, now, reason: str, commit=True):
        violations = row.violation_count + 1
        blocked_until = now + timedelta(minutes=self._block_minutes(violations))

        # only the first worker to observe the breach applies the block
        updated = self._query(row).filter(RateLimitEntry.is_blocked.is_(False)).update(
            {
                RateLimitEntry.is_blocked: True,
                RateLimitEntry.blocked_until: blocked_until,
                RateLimitEntry.block_reason: reason[:200],
                RateLimitEntry.violation_count: RateLimitEntry.violation_count + 1,
                RateLimitEntry.updated_at: now,
            },
            synchronize_session=False,
        )
        self._finish(commit)
        self.session.refresh(row)

        if updated:
            logger.warning(
                "rate_limit_blocked",
                client=row.client_identifier,
                attempt_type=row.attempt_type,
                violations=row.violation_count,
                blocked_until=row.blocked_until.isoformat(),
            )
