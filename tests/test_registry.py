from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from artqr.errors import InvalidInput, NotFound
from artqr.models import Scan
from artqr.registry import DateCount, LinkRegistry
from artqr.shorturl import KEY_ALPHABET


def _scan_rows(session_factory, link_id=None):
    with session_factory() as session:
        query = session.query(Scan)
        if link_id is not None:
            query = query.filter(Scan.link_id == link_id)
        return query.count()


class TestCreateAndResolve:
    """Creating links and following them"""

    @pytest.mark.parametrize("target", [
        "https://example.com/",
        "https://example.com/path?q=1&r=two#frag",
        "http://localhost:3000/ünïcode/页面",
    ])
    def test_resolve_returns_exact_target_and_records_one_scan(self, registry, session_factory, target):
        link = registry.create_link(target)

        assert registry.resolve_link(link.id, user_agent="Mozilla/5.0") == target
        assert _scan_rows(session_factory, link.id) == 1

    @pytest.mark.parametrize("bad", [None, "", "   ", 123, ["https://example.com/"]])
    def test_create_rejects_missing_target(self, registry, session_factory, bad):
        with pytest.raises(InvalidInput):
            registry.create_link(bad)
        assert registry.list_links() == []

    def test_generated_ids_are_url_safe_and_distinct(self, registry):
        ids = {registry.create_link(f"https://example.com/{i}").id for i in range(50)}

        assert len(ids) == 50
        for link_id in ids:
            assert len(link_id) == 8
            assert set(link_id) <= set(KEY_ALPHABET)

    def test_created_at_comes_from_clock(self, registry, clock):
        link = registry.create_link("https://example.com/")
        assert link.created_at == clock.now
        assert registry.get_link(link.id) == link

    def test_resolve_unknown_id_records_nothing(self, registry, session_factory):
        registry.create_link("https://example.com/")

        with pytest.raises(NotFound):
            registry.resolve_link("missing1")
        assert _scan_rows(session_factory) == 0

    @pytest.mark.parametrize("agent", [None, "", "  "])
    def test_missing_user_agent_is_stored_as_unknown(self, registry, agent):
        link = registry.create_link("https://example.com/")
        registry.resolve_link(link.id, user_agent=agent)

        detail = registry.get_detail(link.id)
        assert [s.user_agent for s in detail.scans] == ["unknown"]

    def test_user_agent_is_stored_as_received(self, registry):
        link = registry.create_link("https://example.com/")
        registry.resolve_link(link.id, user_agent="  Mozilla/5.0 (X11)  ")

        assert registry.get_detail(link.id).scans[0].user_agent == "  Mozilla/5.0 (X11)  "

    def test_concurrent_resolutions_are_all_recorded(self, registry, session_factory):
        link = registry.create_link("https://example.com/busy")
        n = 25

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda i: registry.resolve_link(link.id, f"agent-{i}"), range(n)))

        assert results == ["https://example.com/busy"] * n
        assert _scan_rows(session_factory, link.id) == n
        assert registry.list_links()[0].scan_count == n


class TestDelete:
    """Deleting links and cascading to scans"""

    def test_delete_removes_link_and_scans(self, registry, session_factory):
        link = registry.create_link("https://example.com/")
        other = registry.create_link("https://example.org/")
        for _ in range(3):
            registry.resolve_link(link.id, "ua")
        registry.resolve_link(other.id, "ua")

        assert registry.delete_link(link.id) is True

        assert _scan_rows(session_factory, link.id) == 0
        assert _scan_rows(session_factory, other.id) == 1
        with pytest.raises(NotFound):
            registry.get_detail(link.id)
        with pytest.raises(NotFound):
            registry.resolve_link(link.id)

    def test_delete_unknown_returns_false(self, registry):
        assert registry.delete_link("missing1") is False

    def test_delete_twice(self, registry):
        link = registry.create_link("https://example.com/")
        assert registry.delete_link(link.id) is True
        assert registry.delete_link(link.id) is False

    def test_orphan_scans_are_rejected_by_the_database(self, session_factory):
        with pytest.raises(IntegrityError):
            with session_factory.begin() as session:
                session.add(Scan(link_id="ghost123", scanned_at=datetime(2024, 1, 1), user_agent="ua"))

    def test_link_deleted_while_resolving(self, registry, session_factory, clock):
        link = registry.create_link("https://example.com/gone")

        def deleting_clock():
            # runs between the lookup and the scan insert
            registry.delete_link(link.id)
            return clock()

        racing = LinkRegistry(session_factory, clock=deleting_clock)
        with pytest.raises(NotFound):
            racing.resolve_link(link.id, "ua")

        assert _scan_rows(session_factory) == 0
        assert registry.list_links() == []

    def test_scan_ids_are_not_reused(self, registry):
        first = registry.create_link("https://example.com/a")
        registry.resolve_link(first.id, "ua")
        registry.resolve_link(first.id, "ua")
        old_max = max(s.id for s in registry.get_detail(first.id).scans)
        registry.delete_link(first.id)

        second = registry.create_link("https://example.com/b")
        registry.resolve_link(second.id, "ua")

        assert registry.get_detail(second.id).scans[0].id > old_max


class TestListing:
    """Listing links with scan counts"""

    def test_newest_first(self, registry, clock):
        t1 = registry.create_link("https://example.com/1")
        clock.advance(minutes=1)
        t2 = registry.create_link("https://example.com/2")
        clock.advance(minutes=1)
        t3 = registry.create_link("https://example.com/3")

        assert [s.link.id for s in registry.list_links()] == [t3.id, t2.id, t1.id]

    def test_scan_counts_match_scans(self, registry, clock):
        quiet = registry.create_link("https://example.com/quiet")
        clock.advance(seconds=1)
        busy = registry.create_link("https://example.com/busy")
        for _ in range(4):
            registry.resolve_link(busy.id, "ua")

        counts = {s.link.id: s.scan_count for s in registry.list_links()}
        assert counts == {quiet.id: 0, busy.id: 4}

        registry.delete_link(busy.id)
        assert [(s.link.id, s.scan_count) for s in registry.list_links()] == [(quiet.id, 0)]


class TestDetail:
    """Scan history and per-day aggregation"""

    def test_per_date_counts_skip_empty_days(self, registry, clock):
        link = registry.create_link("https://example.com/")
        clock.set(datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc))
        registry.resolve_link(link.id, "a")
        clock.set(datetime(2024, 1, 1, 20, 0, tzinfo=timezone.utc))
        registry.resolve_link(link.id, "b")
        clock.set(datetime(2024, 1, 3, 12, 0, tzinfo=timezone.utc))
        registry.resolve_link(link.id, "c")

        detail = registry.get_detail(link.id)

        assert detail.per_date_counts == [
            DateCount(date="2024-01-01", count=2),
            DateCount(date="2024-01-03", count=1),
        ]
        assert [s.user_agent for s in detail.scans] == ["c", "b", "a"]
        assert detail.scans[0].scanned_at == datetime(2024, 1, 3, 12, 0, tzinfo=timezone.utc)

    def test_no_scans(self, registry):
        link = registry.create_link("https://example.com/")
        detail = registry.get_detail(link.id)
        assert detail.link == link
        assert detail.scans == []
        assert detail.per_date_counts == []

    def test_buckets_follow_reporting_timezone(self, session_factory, clock):
        tokyo = timezone(timedelta(hours=9))
        registry = LinkRegistry(session_factory, clock=clock, report_tz=tokyo)
        link = registry.create_link("https://example.com/")
        clock.set(datetime(2024, 1, 1, 23, 30, tzinfo=timezone.utc))
        registry.resolve_link(link.id, "ua")

        assert registry.get_detail(link.id).per_date_counts == [DateCount(date="2024-01-02", count=1)]

    def test_unknown_id(self, registry):
        with pytest.raises(NotFound):
            registry.get_detail("missing1")
        with pytest.raises(NotFound):
            registry.get_link("missing1")
