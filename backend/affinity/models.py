from sqlalchemy import Column, String, Text, Boolean, DateTime, ForeignKey, JSON, Table, UniqueConstraint
from sqlalchemy.orm import relationship
import uuid
from datetime import datetime
import enum
import sqlalchemy as sa
from affinity.database import Base


def _uuid_str() -> str:
    return str(uuid.uuid4())


class AccountType(str, enum.Enum):
    INDIVIDUAL = "individual"
    COMPANY = "company"
    ADMIN = "admin"


class TaxonomyAxis(str, enum.Enum):
    CATEGORY = "category"
    SUBCATEGORY = "subcategory"
    SUBSUBCATEGORY = "subsubcategory"
    IDENTITY = "identity"
    GOAL = "goal"
    INDUSTRY_CATEGORY = "industry_category"
    INDUSTRY_SUBCATEGORY = "industry_subcategory"
    INDUSTRY_SUBSUBCATEGORY = "industry_subsubcategory"


class TagSource(str, enum.Enum):
    ATTRIBUTE = "attribute"  # what the user is / does
    INTEREST = "interest"  # what the user is looking for


class ContentType(str, enum.Enum):
    JOB = "job"
    EVENT = "event"
    PRODUCT = "product"
    SERVICE = "service"
    TOURISM = "tourism"
    FUNDING = "funding"
    MOMENT = "moment"
    NEED = "need"


class ModerationStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class EmailFrequency(str, enum.Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    AUTO = "auto"


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    name = Column(String, nullable=True)
    email = Column(String, unique=True, index=True, nullable=True)
    country = Column(String, nullable=True)
    city = Column(String, nullable=True)
    is_verified = Column(Boolean, nullable=False, default=False)
    account_type = Column(String, nullable=False, default=AccountType.INDIVIDUAL.value)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    settings = relationship("UserSettings", back_populates="user", uselist=False)
    taxonomy_links = relationship("UserTaxonomy", back_populates="user", cascade="all, delete-orphan")
    content_items = relationship("ContentItem", back_populates="owner")


class TaxonomyTerm(Base):
    """
    One node of the shared taxonomy (categories, identities, goals, industries).
    The axis decides which scoring bucket the term feeds.
    """
    __tablename__ = "taxonomy_terms"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    axis = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    parent_id = Column(String(36), ForeignKey("taxonomy_terms.id"), nullable=True)


class UserTaxonomy(Base):
    __tablename__ = "user_taxonomy"

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    term_id = Column(String(36), ForeignKey("taxonomy_terms.id", ondelete="CASCADE"), primary_key=True)
    source = Column(String, primary_key=True, default=TagSource.ATTRIBUTE.value)

    # Relationships
    user = relationship("User", back_populates="taxonomy_links")
    term = relationship("TaxonomyTerm")


class Connection(Base):
    """Unordered pair of connected users."""
    __tablename__ = "connections"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    user_one_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    user_two_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("user_one_id", "user_two_id", name="uq_connections_pair"),
    )


class UserBlock(Base):
    __tablename__ = "user_blocks"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    blocker_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    blocked_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)


content_taxonomy = Table(
    "content_taxonomy",
    Base.metadata,
    Column("content_id", String(36), ForeignKey("content_items.id", ondelete="CASCADE"), primary_key=True),
    Column("term_id", String(36), ForeignKey("taxonomy_terms.id", ondelete="CASCADE"), primary_key=True),
)


class ContentItem(Base):
    """
    Any piece of user-authored content: jobs, events, products, services,
    tourism posts, funding projects, moments and needs.
    """
    __tablename__ = "content_items"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    content_type = Column(String, nullable=False, index=True)
    owner_user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    company_name = Column(String, nullable=True)  # jobs only
    city = Column(String, nullable=True)
    country = Column(String, nullable=True)
    moderation_status = Column(String, nullable=False, default=ModerationStatus.APPROVED.value)
    status = Column(String, nullable=True)  # funding: draft | published
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    # Relationships
    owner = relationship("User", back_populates="content_items")
    terms = relationship("TaxonomyTerm", secondary=content_taxonomy)


class UserSettings(Base):
    __tablename__ = "user_settings"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    # Stored as JSON but legacy rows hold a serialized string; read through services.preferences
    notifications = Column(JSON, nullable=True)
    email_frequency = Column(String, nullable=False, default=EmailFrequency.DAILY.value)
    # People recommendations: also score the candidate against the viewer, then combine
    bidirectional_match = Column(Boolean, nullable=False, default=True)
    bidirectional_match_formula = Column(String, nullable=False, default="reciprocal")  # simple | reciprocal
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="settings")


class JobApplication(Base):
    __tablename__ = "job_applications"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    job_id = Column(String(36), ForeignKey("content_items.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=sa.func.now(), nullable=False)

    # Relationships
    job = relationship("ContentItem")


class EventRegistration(Base):
    __tablename__ = "event_registrations"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    event_id = Column(String(36), ForeignKey("content_items.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=sa.func.now(), nullable=False)

    # Relationships
    event = relationship("ContentItem")
