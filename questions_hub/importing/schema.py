from __future__ import annotations

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

from .models import PackageStatus, QuestionNumberingMode, TourType

Base = declarative_base()

package_editors = Table(
    "package_editors",
    Base.metadata,
    Column("package_id", Integer, ForeignKey("packages.id", ondelete="CASCADE"), primary_key=True),
    Column("author_id", Integer, ForeignKey("authors.id"), primary_key=True),
)

tour_editors = Table(
    "tour_editors",
    Base.metadata,
    Column("tour_id", Integer, ForeignKey("tours.id", ondelete="CASCADE"), primary_key=True),
    Column("author_id", Integer, ForeignKey("authors.id"), primary_key=True),
)

block_editors = Table(
    "block_editors",
    Base.metadata,
    Column("block_id", Integer, ForeignKey("blocks.id", ondelete="CASCADE"), primary_key=True),
    Column("author_id", Integer, ForeignKey("authors.id"), primary_key=True),
)

question_authors = Table(
    "question_authors",
    Base.metadata,
    Column("question_id", Integer, ForeignKey("questions.id", ondelete="CASCADE"), primary_key=True),
    Column("author_id", Integer, ForeignKey("authors.id"), primary_key=True),
)

package_tags = Table(
    "package_tags",
    Base.metadata,
    Column("package_id", Integer, ForeignKey("packages.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id"), primary_key=True),
)


class PackageModel(Base):
    __tablename__ = "packages"
    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String, nullable=False)
    description = Column(Text)
    preamble = Column(Text)
    source_url = Column(String)
    status = Column(Enum(PackageStatus), nullable=False)
    owner_id = Column(String, index=True)
    total_questions = Column(Integer, default=0)
    numbering_mode = Column(Enum(QuestionNumberingMode))
    shared_editors = Column(Boolean, default=False)
    played_from = Column(Date)
    played_to = Column(Date)
    created_at = Column(DateTime)


class TourModel(Base):
    __tablename__ = "tours"
    id = Column(Integer, primary_key=True, autoincrement=True)
    package_id = Column(Integer, ForeignKey("packages.id", ondelete="CASCADE"), index=True)
    number = Column(String)
    order_index = Column(Integer)
    type = Column(Enum(TourType))
    preamble = Column(Text)
    comment = Column(Text)


class BlockModel(Base):
    __tablename__ = "blocks"
    id = Column(Integer, primary_key=True, autoincrement=True)
    tour_id = Column(Integer, ForeignKey("tours.id", ondelete="CASCADE"), index=True)
    name = Column(String)
    order_index = Column(Integer)
    preamble = Column(Text)


class QuestionModel(Base):
    __tablename__ = "questions"
    id = Column(Integer, primary_key=True, autoincrement=True)
    tour_id = Column(Integer, ForeignKey("tours.id", ondelete="CASCADE"), index=True)
    block_id = Column(Integer, ForeignKey("blocks.id"), nullable=True, index=True)
    order_index = Column(Integer)
    number = Column(String)
    host_instructions = Column(String(1000))
    text = Column(Text)
    handout_text = Column(Text)
    handout_url = Column(String)
    answer = Column(String(1000))
    accepted_answers = Column(String(1000))
    rejected_answers = Column(String(1000))
    comment = Column(Text)
    comment_attachment_url = Column(String)
    source = Column(Text)


class AuthorModel(Base):
    __tablename__ = "authors"
    __table_args__ = (UniqueConstraint("first_name", "last_name"),)
    id = Column(Integer, primary_key=True, autoincrement=True)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)


class TagModel(Base):
    __tablename__ = "tags"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    # casefolded name; SQLite's lower() only folds ASCII
    normalized_name = Column(String, nullable=False, unique=True)
