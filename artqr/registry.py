"""Link registry: short-link lifecycle, scan recording and scan aggregation.

Every operation runs in its own transaction. Aggregates (scan counts,
per-date buckets) are computed from the ``scans`` rows at query time and
never stored.
"""

from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from artqr.errors import InvalidInput, NotFound, StorageError
from artqr.logging import audit, get_logger, trace
from artqr.models import Link, Scan
from artqr.shorturl import generate_key

log = get_logger("registry")

UNKNOWN_USER_AGENT = "unknown"
MAX_KEY_ATTEMPTS = 5


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _to_db(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def _from_db(dt: datetime) -> datetime:
    return dt.replace(tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ShortLink:
    id: str
    target_url: str
    created_at: datetime

    @classmethod
    def from_row(cls, row: Link) -> "ShortLink":
        return cls(id=row.id, target_url=row.target_url, created_at=_from_db(row.created_at))


@dataclass(frozen=True)
class ScanEvent:
    id: int
    link_id: str
    scanned_at: datetime
    user_agent: str

    @classmethod
    def from_row(cls, row: Scan) -> "ScanEvent":
        return cls(id=row.id, link_id=row.link_id,
                   scanned_at=_from_db(row.scanned_at), user_agent=row.user_agent)


@dataclass(frozen=True)
class LinkSummary:
    link: ShortLink
    scan_count: int


@dataclass(frozen=True)
class DateCount:
    date: str  # YYYY-MM-DD
    count: int


@dataclass(frozen=True)
class LinkDetail:
    link: ShortLink
    scans: list[ScanEvent]  # newest first
    per_date_counts: list[DateCount]  # oldest date first


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class LinkRegistry:
    """Short links and their scans, backed by a SQLAlchemy session factory.

    Args:
        session_factory: From ``artqr.database.init_db``.
        key_length: Characters per generated short key.
        clock: Returns the current aware datetime; injectable for tests.
        report_tz: Timezone whose calendar dates bucket ``per_date_counts``.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        key_length: int = 8,
        clock=utc_now,
        report_tz: tzinfo = timezone.utc,
    ):
        self._session_factory = session_factory
        self.key_length = key_length
        self._clock = clock
        self._report_tz = report_tz

    @contextmanager
    def _transaction(self, operation: str):
        try:
            with self._session_factory.begin() as session:
                yield session
        except SQLAlchemyError as exc:
            log.error("%s failed", operation, exc_info=True)
            raise StorageError(f"{operation} failed: {exc.__class__.__name__}") from exc

    @trace
    def create_link(self, target_url: str) -> ShortLink:
        """Register ``target_url`` under a fresh random key."""
        if not isinstance(target_url, str) or not target_url.strip():
            raise InvalidInput("Target URL is required and must be a string")

        for attempt in range(1, MAX_KEY_ATTEMPTS + 1):
            key = generate_key(self.key_length)
            created_at = _to_db(self._clock())
            try:
                with self._transaction("create_link") as session:
                    session.add(Link(id=key, target_url=target_url, created_at=created_at))
                    session.flush()
            except StorageError as exc:
                if not isinstance(exc.__cause__, IntegrityError):
                    raise
                log.warning("Short key collision on attempt %d", attempt)
                continue

            audit("link.created", logger=log, id=key, target=target_url[:80])
            return ShortLink(id=key, target_url=target_url, created_at=_from_db(created_at))

        raise StorageError(f"Could not allocate a unique short key after {MAX_KEY_ATTEMPTS} attempts")

    @trace
    def get_link(self, link_id: str) -> ShortLink:
        with self._transaction("get_link") as session:
            row = session.get(Link, link_id)
            if row is None:
                raise NotFound(link_id)
            return ShortLink.from_row(row)

    @trace
    def resolve_link(self, link_id: str, user_agent: str | None = None) -> str:
        """Return the target URL and record one scan, atomically.

        The scan insert relies on the foreign key: if the link is deleted
        between the lookup and the insert, the insert is rejected and the
        call fails with ``NotFound`` instead of leaving an orphan.
        """
        agent = user_agent if user_agent and user_agent.strip() else UNKNOWN_USER_AGENT
        with self._transaction("resolve_link") as session:
            target = session.query(Link.target_url).filter(Link.id == link_id).scalar()
            if target is None:
                audit("link.resolve_miss", logger=log, id=link_id)
                raise NotFound(link_id)
            session.add(Scan(link_id=link_id, scanned_at=_to_db(self._clock()), user_agent=agent))
            try:
                session.flush()
            except IntegrityError as exc:
                audit("link.resolve_miss", logger=log, id=link_id, reason="deleted")
                raise NotFound(link_id) from exc

        audit("link.resolved", logger=log, id=link_id, target=target[:80])
        return target

    @trace
    def delete_link(self, link_id: str) -> bool:
        """Delete the link and all its scans in one transaction.

        Returns False if no such link existed.
        """
        with self._transaction("delete_link") as session:
            scans = session.query(Scan).filter(Scan.link_id == link_id).delete(synchronize_session=False)
            links = session.query(Link).filter(Link.id == link_id).delete(synchronize_session=False)

        if links:
            audit("link.deleted", logger=log, id=link_id, scans=scans)
        return links > 0

    @trace
    def list_links(self) -> list[LinkSummary]:
        """All links with their scan counts, newest first."""
        with self._transaction("list_links") as session:
            rows = (
                session.query(Link, func.count(Scan.id))
                .outerjoin(Scan, Scan.link_id == Link.id)
                .group_by(Link.id)
                .order_by(Link.created_at.desc(), Link.id)
                .all()
            )
            return [LinkSummary(link=ShortLink.from_row(link), scan_count=count) for link, count in rows]

    @trace
    def get_detail(self, link_id: str) -> LinkDetail:
        """The link, its scans (newest first) and daily counts (oldest day first)."""
        with self._transaction("get_detail") as session:
            row = session.get(Link, link_id)
            if row is None:
                raise NotFound(link_id)
            scans = [
                ScanEvent.from_row(s)
                for s in session.query(Scan)
                .filter(Scan.link_id == link_id)
                .order_by(Scan.scanned_at.desc(), Scan.id.desc())
            ]
            link = ShortLink.from_row(row)

        return LinkDetail(link=link, scans=scans, per_date_counts=self._bucket_by_date(scans))

    def _bucket_by_date(self, scans: list[ScanEvent]) -> list[DateCount]:
        days = Counter(s.scanned_at.astimezone(self._report_tz).date().isoformat() for s in scans)
        return [DateCount(date=day, count=count) for day, count in sorted(days.items())]
