"""
Persisted schema: links, scans and instance settings.

Scans belong to their link; deleting a link deletes its scans
(``ON DELETE CASCADE`` plus an ORM cascade). Scan ids use SQLite
AUTOINCREMENT so they are never handed out twice.
"""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class Link(Base):
    __tablename__ = "links"

    id = Column(String(32), primary_key=True)
    target_url = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, index=True)  # naive UTC

    scans = relationship(
        "Scan",
        back_populates="link",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self):
        return f"<Link {self.id} -> {self.target_url}>"


class Scan(Base):
    __tablename__ = "scans"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    link_id = Column(String(32), ForeignKey("links.id", ondelete="CASCADE"), nullable=False, index=True)
    scanned_at = Column(DateTime, nullable=False)  # naive UTC
    user_agent = Column(Text, nullable=False, default="unknown")

    link = relationship("Link", back_populates="scans")

    def __repr__(self):
        return f"<Scan {self.id} for link {self.link_id}>"


class Setting(Base):
    __tablename__ = "settings"

    key = Column(String(64), primary_key=True)
    value = Column(Text, nullable=False)
