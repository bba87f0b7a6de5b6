"""SQLAlchemy ORM models: the pgvector chunk index and the verification tables."""

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, relationship


class Base(DeclarativeBase):
    pass


class BylawChunkRecord(Base):
    """A chunk of bylaw text with its embedding vector."""

    __tablename__ = "bylaw_chunks"

    id = Column(String(200), primary_key=True)
    bylaw_number = Column(String(20), nullable=False, index=True)
    title = Column(String(500), nullable=False, default="")
    section = Column(String(200), default="")
    section_title = Column(String(500))
    category = Column(String(50), nullable=False, default="general", index=True)
    date_enacted = Column(String(40), default="")
    last_updated = Column(String(40), default="")
    is_consolidated = Column(Boolean)
    consolidated_date = Column(String(100))
    chunk_index = Column(Integer, default=0)
    chunk_text = Column(Text, nullable=False)
    # Dimension is fixed per database by Database.init from the configured embedder
    embedding = Column(Vector())
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Bylaw(Base):
    """Authoritative bylaw record used to verify citations."""

    __tablename__ = "bylaws"

    bylaw_number = Column(String(20), primary_key=True)
    title = Column(String(500), nullable=False)
    is_consolidated = Column(Boolean, nullable=False, default=False)
    pdf_path = Column(String(500), nullable=False)
    official_url = Column(String(500), nullable=False)
    last_verified = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    consolidated_date = Column(String(100))
    enactment_date = Column(String(100))
    amendments = Column(Text)  # comma-joined bylaw numbers

    sections = relationship(
        "BylawSection",
        back_populates="bylaw",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
        order_by="BylawSection.id",
    )


class BylawSection(Base):
    """An officially known section of a bylaw."""

    __tablename__ = "bylaw_sections"
    __table_args__ = (UniqueConstraint("bylaw_number", "section_number", name="uq_bylaw_section"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    bylaw_number = Column(
        String(20),
        ForeignKey("bylaws.bylaw_number", ondelete="CASCADE", onupdate="CASCADE"),
        nullable=False,
        index=True,
    )
    section_number = Column(String(100), nullable=False)
    title = Column(String(500))
    content = Column(Text, nullable=False)

    bylaw = relationship("Bylaw", back_populates="sections")


class CitationFeedback(Base):
    """Append-only user feedback on a citation."""

    __tablename__ = "citation_feedback"

    id = Column(Integer, primary_key=True, autoincrement=True)
    bylaw_number = Column(String(20), nullable=False, index=True)
    section = Column(String(200), nullable=False)
    feedback = Column(String(20), nullable=False)
    user_comment = Column(Text)
    timestamp = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
