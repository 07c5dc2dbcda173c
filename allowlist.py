import logging
import time

from resolver import EMAIL_COLUMN, SheetSchema, normalize_email
from sheets import USERS_SHEET

logger = logging.getLogger(__name__)

CACHE_SECONDS = 5 * 60


class AllowList:
    """
    Emails allowed to sign in, read from the Users Table and kept for
    CACHE_SECONDS. Build one per process and share it; a refresh replaces the
    whole set.
    """

    def __init__(self, store, clock=time.time, ttl: float = CACHE_SECONDS):
        self.store = store
        self.clock = clock
        self.ttl = ttl
        # (emails, refreshed_at), swapped as one value so readers never see half a refresh
        self._cache = None

    def _cached(self, now: float):
        cache = self._cache
        if cache is None:
            return None
        emails, refreshed_at = cache
        if now - refreshed_at < self.ttl:
            return emails
        return None

    def refresh(self, now: float = None) -> set:
        rows = self.store.read(USERS_SHEET) or []
        emails = set()
        if rows:
            schema = SheetSchema(USERS_SHEET, rows[0])
            for row in rows[1:]:
                email = normalize_email(schema.cell(row, EMAIL_COLUMN))
                if email:
                    emails.add(email)
        self._cache = (frozenset(emails), self.clock() if now is None else now)
        logger.info("Allow-list refreshed: %d email(s)", len(emails))
        return emails

    def invalidate(self):
        self._cache = None

    def is_allowed(self, email) -> bool:
        wanted = normalize_email(email)
        if not wanted:
            return False
        now = self.clock()
        emails = self._cached(now)
        if emails is not None:
            return wanted in emails
        try:
            emails = self.refresh(now)
        except Exception:
            logger.exception("Could not read the allow-list")
            return False
        return wanted in emails
