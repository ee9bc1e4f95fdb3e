from enum import Enum

from sqlalchemy import Column, Integer, String, DateTime, Boolean, Text, JSON, ForeignKey, Index, UniqueConstraint, event
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from backend.db.database import Base


class UserRole(str, Enum):
    ADMIN = "admin"
    WRITER = "writer"
    SCHOOL = "school"
    MARKETER = "marketer"


class SubmissionCategory(str, Enum):
    NEWS = "news"
    ACHIEVEMENT = "achievement"
    EVENT = "event"
    ANNOUNCEMENT = "announcement"
    OTHER = "other"


class SubmissionStatus(str, Enum):
    SUBMITTED_SCHOOL = "submitted_school"
    DRAFT_CREATED = "draft_created"
    REVIEW = "review"
    PUBLISHED_WP = "published_wp"


class BlogStatus(str, Enum):
    DRAFT_CREATED = "draft_created"
    REVIEW = "review"
    DRAFT_WRITER = "draft_writer"
    APPROVED_SCHOOL = "approved_school"
    PUBLISHED_WP = "published_wp"


class TransactionType(str, Enum):
    PURCHASE = "purchase"
    USAGE = "usage"
    REWARD = "reward"
    ADJUSTMENT = "adjustment"


class Platform(str, Enum):
    FACEBOOK = "facebook"
    INSTAGRAM = "instagram"
    LINKEDIN = "linkedin"


class PublishAttemptStatus(str, Enum):
    IN_FLIGHT = "in_flight"
    PUBLISHED = "published"
    NEEDS_RECONCILIATION = "needs_reconciliation"


class School(Base):
    __tablename__ = "schools"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    city = Column(String(120))
    contact_email = Column(String(255))
    is_active = Column(Boolean, default=True, nullable=False)

    # Materialized from SUM(credit_transactions.coins); the log is authoritative
    coins = Column(Integer, default=0, nullable=False)
    ledger_version = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    users = relationship("User", back_populates="school")
    submissions = relationship("Submission", back_populates="school")
    transactions = relationship("CreditTransaction", back_populates="school", order_by="CreditTransaction.id")
    social_connections = relationship("SocialConnection", back_populates="school")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "city": self.city,
            "coins": self.coins,
            "is_active": self.is_active,
        }


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255))
    role = Column(String(20), nullable=False, default=UserRole.SCHOOL.value)
    school_id = Column(Integer, ForeignKey("schools.id"), nullable=True, index=True)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    school = relationship("School", back_populates="users")

    @property
    def role_enum(self) -> UserRole:
        return UserRole(self.role)


class Submission(Base):
    __tablename__ = "submissions"

    id = Column(Integer, primary_key=True, index=True)
    school_id = Column(Integer, ForeignKey("schools.id"), nullable=False, index=True)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=False)
    category = Column(String(30), nullable=False, default=SubmissionCategory.OTHER.value)
    attachments = Column(JSON, default=list)  # ordered blob references
    status = Column(String(30), nullable=False, default=SubmissionStatus.SUBMITTED_SCHOOL.value, index=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    version = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    school = relationship("School", back_populates="submissions")
    blog = relationship("Blog", back_populates="submission", uselist=False)

    def to_dict(self):
        return {
            "id": self.id,
            "school_id": self.school_id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "attachments": list(self.attachments or []),
            "status": self.status,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class Blog(Base):
    __tablename__ = "blogs"

    id = Column(Integer, primary_key=True, index=True)
    submission_id = Column(Integer, ForeignKey("submissions.id"), nullable=False, unique=True)
    title = Column(String(500), nullable=False)
    content = Column(Text, nullable=False, default="")
    slug = Column(String(500), nullable=False, index=True)
    meta_title = Column(String(500))
    meta_description = Column(Text)
    seo_keywords = Column(JSON, default=list)  # set semantics, stored sorted
    tags = Column(JSON, default=list)  # ordered
    category = Column(String(30))
    featured_image = Column(String(1000))
    reading_time = Column(Integer, nullable=False, default=1)
    status = Column(String(30), nullable=False, default=BlogStatus.DRAFT_CREATED.value, index=True)
    assigned_school_id = Column(Integer, ForeignKey("schools.id"), nullable=False, index=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)

    wordpress_post_id = Column(Integer, unique=True, nullable=True)
    wordpress_url = Column(String(1000))
    published_at = Column(DateTime(timezone=True))

    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    submission = relationship("Submission", back_populates="blog")
    assigned_school = relationship("School")
    social_posts = relationship("SocialPost", back_populates="blog", order_by="SocialPost.id")

    def to_dict(self):
        return {
            "id": self.id,
            "submission_id": self.submission_id,
            "title": self.title,
            "content": self.content,
            "slug": self.slug,
            "meta_title": self.meta_title,
            "meta_description": self.meta_description,
            "seo_keywords": list(self.seo_keywords or []),
            "tags": list(self.tags or []),
            "category": self.category,
            "featured_image": self.featured_image,
            "reading_time": self.reading_time,
            "status": self.status,
            "assigned_school_id": self.assigned_school_id,
            "created_by": self.created_by,
            "wordpress_post_id": self.wordpress_post_id,
            "wordpress_url": self.wordpress_url,
            "published_at": self.published_at.isoformat() if self.published_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class CreditTransaction(Base):
    """Append-only coin ledger entry"""
    __tablename__ = "credit_transactions"

    id = Column(Integer, primary_key=True, index=True)
    school_id = Column(Integer, ForeignKey("schools.id"), nullable=False)
    type = Column(String(20), nullable=False)
    coins = Column(Integer, nullable=False)  # signed
    description = Column(String(500), nullable=False)
    related_blog_id = Column(Integer, ForeignKey("blogs.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    school = relationship("School", back_populates="transactions")

    __table_args__ = (
        Index('idx_credit_tx_school', school_id, id),
        Index('idx_credit_tx_blog', related_blog_id),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "school_id": self.school_id,
            "type": self.type,
            "coins": self.coins,
            "description": self.description,
            "related_blog_id": self.related_blog_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@event.listens_for(CreditTransaction, "before_update")
def _reject_transaction_update(mapper, connection, target):
    raise ValueError("credit_transactions is append-only; updates are not allowed")


@event.listens_for(CreditTransaction, "before_delete")
def _reject_transaction_delete(mapper, connection, target):
    raise ValueError("credit_transactions is append-only; deletes are not allowed")


class PublishAttempt(Base):
    """Per-blog publish marker; the unique blog_id is the publish mutex"""
    __tablename__ = "publish_attempts"

    id = Column(Integer, primary_key=True)
    blog_id = Column(Integer, ForeignKey("blogs.id"), nullable=False, unique=True)
    status = Column(String(30), nullable=False, default=PublishAttemptStatus.IN_FLIGHT.value)
    acting_user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    wordpress_post_id = Column(Integer)
    error = Column(Text)
    started_at = Column(DateTime(timezone=True), server_default=func.now())
    finished_at = Column(DateTime(timezone=True))


class SocialConnection(Base):
    """Tenant-scoped social media credentials"""
    __tablename__ = "social_connections"

    id = Column(Integer, primary_key=True, index=True)
    school_id = Column(Integer, ForeignKey("schools.id", ondelete="CASCADE"), nullable=False)
    platform = Column(String(20), nullable=False)
    connected = Column(Boolean, default=False, nullable=False)

    # Fernet-encrypted, never serialized to clients
    access_token = Column(Text)
    refresh_token = Column(Text)
    enc_version = Column(Integer, nullable=False, default=1)
    enc_kid = Column(String(50), nullable=False, default='default')

    expires_at = Column(DateTime(timezone=True))
    target_id = Column(String(255))  # page id / organization urn
    platform_metadata = Column(JSON, default=dict)
    refresh_failures = Column(Integer, nullable=False, default=0)
    token_version = Column(Integer, nullable=False, default=0)
    last_refreshed_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    school = relationship("School", back_populates="social_connections")

    __table_args__ = (
        UniqueConstraint('school_id', 'platform', name='uq_social_connection_school_platform'),
        Index('idx_social_connections_expires', expires_at),
    )


class SocialPost(Base):
    """Outcome of one platform inside a fan-out"""
    __tablename__ = "social_posts"

    id = Column(Integer, primary_key=True, index=True)
    blog_id = Column(Integer, ForeignKey("blogs.id"), nullable=False, index=True)
    platform = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False)  # posted, failed
    remote_post_id = Column(String(255))
    error_code = Column(String(50))
    error_message = Column(Text)
    created_by = Column(Integer, ForeignKey("users.id"))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    blog = relationship("Blog", back_populates="social_posts")


class PaymentOrder(Base):
    """Coin purchase order created with the payment provider"""
    __tablename__ = "payment_orders"

    id = Column(Integer, primary_key=True, index=True)
    school_id = Column(Integer, ForeignKey("schools.id"), nullable=False, index=True)
    provider_order_id = Column(String(255), unique=True, nullable=False)
    provider_payment_id = Column(String(255))
    amount_paise = Column(Integer, nullable=False)
    coins = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default="created")
    created_by = Column(Integer, ForeignKey("users.id"))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    paid_at = Column(DateTime(timezone=True))
