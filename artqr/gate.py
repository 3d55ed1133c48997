"""Pro status and the freemium listing gate."""

from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from artqr.database import PRO_KEY
from artqr.errors import StorageError
from artqr.logging import audit, get_logger, trace
from artqr.models import Setting
from artqr.registry import LinkRegistry, LinkSummary

log = get_logger("gate")

FREE_VISIBLE_LINKS = 2


class ProStatus:
    """Instance-wide paid flag stored in the ``settings`` table.

    Starts false. ``unlock`` is the only transition and is idempotent;
    nothing sets it back to false.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def is_pro(self) -> bool:
        try:
            with self._session_factory() as session:
                row = session.get(Setting, PRO_KEY)
                return row is not None and row.value == "true"
        except SQLAlchemyError as exc:
            log.error("Reading pro status failed", exc_info=True)
            raise StorageError("Reading pro status failed") from exc

    @trace
    def unlock(self) -> None:
        """Record a completed purchase. Repeated calls just reaffirm it."""
        try:
            with self._session_factory.begin() as session:
                row = session.get(Setting, PRO_KEY)
                already = row is not None and row.value == "true"
                if row is None:
                    session.add(Setting(key=PRO_KEY, value="true"))
                else:
                    row.value = "true"
        except SQLAlchemyError as exc:
            log.error("Unlocking pro status failed", exc_info=True)
            raise StorageError("Unlocking pro status failed") from exc
        audit("pro.unlocked", logger=log, already_pro=already)


@dataclass(frozen=True)
class GatedListing:
    links: list[LinkSummary]
    total_count: int
    hidden_count: int
    is_pro: bool


def gate_listing(summaries: list[LinkSummary], is_pro: bool,
                 visible_limit: int = FREE_VISIBLE_LINKS) -> GatedListing:
    """Truncate a newest-first listing for free instances.

    Free instances see the ``visible_limit`` most recent links and a count of
    the rest; pro instances see everything.
    """
    total = len(summaries)
    if is_pro or total <= visible_limit:
        return GatedListing(links=list(summaries), total_count=total, hidden_count=0, is_pro=is_pro)
    return GatedListing(
        links=list(summaries[:visible_limit]),
        total_count=total,
        hidden_count=total - visible_limit,
        is_pro=False,
    )


class FreemiumGate:
    """``LinkRegistry.list_links`` seen through the freemium policy."""

    def __init__(self, registry: LinkRegistry, pro_status: ProStatus,
                 visible_limit: int = FREE_VISIBLE_LINKS):
        self.registry = registry
        self.pro_status = pro_status
        self.visible_limit = visible_limit

    def list_links(self) -> GatedListing:
        listing = gate_listing(self.registry.list_links(), self.pro_status.is_pro(), self.visible_limit)
        if listing.hidden_count:
            log.debug("Hiding %d links behind the pro gate", listing.hidden_count)
        return listing
