import enum
from datetime import datetime

from sqlalchemy import (
    JSON, Boolean, Column, DateTime, Enum, Float, ForeignKey, Integer, String, Text, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .database import Base


class Role(str, enum.Enum):
    CLIENT = "CLIENT"
    FREELANCER = "FREELANCER"
    ADMIN = "ADMIN"


class ProjectStatus(str, enum.Enum):
    OPEN = "OPEN"
    PAUSED = "PAUSED"
    IN_PROGRESS = "IN_PROGRESS"
    PENDING_REVIEW = "PENDING_REVIEW"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    DISPUTED = "DISPUTED"


class ApplicationStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    WITHDRAWN = "WITHDRAWN"


class PackageTier(str, enum.Enum):
    BASIC = "BASIC"
    STANDARD = "STANDARD"
    PREMIUM = "PREMIUM"


class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    IN_PROGRESS = "IN_PROGRESS"
    DELIVERED = "DELIVERED"
    REVISION_REQUESTED = "REVISION_REQUESTED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    DISPUTED = "DISPUTED"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    RELEASED = "RELEASED"
    REFUNDED = "REFUNDED"


class EscrowStatus(str, enum.Enum):
    PENDING = "PENDING"
    FUNDED = "FUNDED"
    RELEASED = "RELEASED"
    REFUNDED = "REFUNDED"


class TransactionType(str, enum.Enum):
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    FEE = "FEE"
    REFUND = "REFUND"


class PayoutStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class PayoutMethod(str, enum.Enum):
    PAYPAL = "PAYPAL"
    PAYONEER = "PAYONEER"
    STRIPE_CONNECT = "STRIPE_CONNECT"


class FeaturedLevel(str, enum.Enum):
    NONE = "NONE"
    FEATURED = "FEATURED"
    PREMIUM = "PREMIUM"
    SPOTLIGHT = "SPOTLIGHT"


class MessageType(str, enum.Enum):
    TEXT = "TEXT"
    FILE = "FILE"
    IMAGE = "IMAGE"
    SYSTEM = "SYSTEM"


class NotificationPriority(str, enum.Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"


def status_column(enum_cls, default):
    return Column(Enum(enum_cls, native_enum=False, length=32), default=default, nullable=False)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, nullable=False)
    email = Column(String(100), unique=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    role = status_column(Role, Role.CLIENT)

    first_name = Column(String(50), nullable=False, default="")
    last_name = Column(String(50), nullable=False, default="")
    bio = Column(Text, nullable=True)
    location = Column(String(100), nullable=True)
    skills = Column(JSON, default=list)
    hourly_rate = Column(Float, nullable=True)

    is_active = Column(Boolean, default=True)
    is_available = Column(Boolean, default=True)

    rating = Column(Float, default=0.0)
    review_count = Column(Integer, default=0)
    total_earnings = Column(Float, default=0.0)
    total_spent = Column(Float, default=0.0)

    # where released earnings go
    payout_method = Column(Enum(PayoutMethod, native_enum=False, length=32), nullable=True)
    payout_email = Column(String(100), nullable=True)
    stripe_connect_account_id = Column(String(100), nullable=True)

    created_at = Column(DateTime, default=datetime.now)
    last_active_at = Column(DateTime, nullable=True)

    client_projects = relationship("Project", back_populates="client", foreign_keys="Project.client_id")
    freelancer_projects = relationship("Project", back_populates="freelancer", foreign_keys="Project.freelancer_id")
    services = relationship("Service", back_populates="freelancer", cascade="all, delete-orphan")
    portfolios = relationship("Portfolio", back_populates="user", cascade="all, delete-orphan")

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip() or self.username

    def has_payout_method(self):
        if self.payout_method in (PayoutMethod.PAYPAL, PayoutMethod.PAYONEER):
            return bool(self.payout_email)
        if self.payout_method == PayoutMethod.STRIPE_CONNECT:
            return bool(self.stripe_connect_account_id)
        return False


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False)
    slug = Column(String(100), unique=True, nullable=False, index=True)
    description = Column(Text, nullable=True)


class Project(Base):
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    requirements = Column(Text, nullable=True)
    timeline = Column(String(500), nullable=False)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=True)

    client_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    freelancer_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    status = status_column(ProjectStatus, ProjectStatus.OPEN)
    min_budget = Column(Float, nullable=False)
    max_budget = Column(Float, nullable=False)

    # fixed when an application is accepted
    agreed_amount = Column(Float, nullable=True)
    buyer_fee = Column(Float, nullable=True)
    seller_commission = Column(Float, nullable=True)
    total_charged = Column(Float, nullable=True)
    payment_status = status_column(PaymentStatus, PaymentStatus.PENDING)

    featured_level = status_column(FeaturedLevel, FeaturedLevel.NONE)
    featured_until = Column(DateTime, nullable=True)

    cancel_reason = Column(Text, nullable=True)
    change_request = Column(Text, nullable=True)
    dispute_reason = Column(Text, nullable=True)
    timeline_update_reason = Column(Text, nullable=True)
    budget_update_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)
    completed_at = Column(DateTime, nullable=True)

    client = relationship("User", back_populates="client_projects", foreign_keys=[client_id])
    freelancer = relationship("User", back_populates="freelancer_projects", foreign_keys=[freelancer_id])
    category = relationship("Category")
    applications = relationship("Application", back_populates="project", cascade="all, delete-orphan")
    escrow = relationship("Escrow", back_populates="project", uselist=False)
    reviews = relationship("Review", back_populates="project", cascade="all, delete-orphan")
    work_notes = relationship("WorkNote", cascade="all, delete-orphan")

    def is_party(self, user_id):
        return user_id in (self.client_id, self.freelancer_id)


class Application(Base):
    __tablename__ = "applications"
    __table_args__ = (UniqueConstraint("project_id", "freelancer_id", name="uq_application_once"),)

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False)
    freelancer_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    cover_letter = Column(Text, nullable=False)
    proposed_budget = Column(Float, nullable=True)
    timeline = Column(String(500), nullable=False)
    status = status_column(ApplicationStatus, ApplicationStatus.PENDING)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    project = relationship("Project", back_populates="applications")
    freelancer = relationship("User")


class Service(Base):
    __tablename__ = "services"

    id = Column(Integer, primary_key=True, index=True)
    freelancer_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    short_description = Column(String(300), nullable=True)
    requirements = Column(Text, nullable=True)
    tags = Column(JSON, default=list)
    cover_image = Column(String, nullable=True)

    is_active = Column(Boolean, default=True)
    featured_level = status_column(FeaturedLevel, FeaturedLevel.NONE)
    featured_until = Column(DateTime, nullable=True)

    rating = Column(Float, default=0.0)
    review_count = Column(Integer, default=0)
    orders_completed = Column(Integer, default=0)

    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    freelancer = relationship("User", back_populates="services")
    category = relationship("Category")
    packages = relationship(
        "ServicePackage", back_populates="service", cascade="all, delete-orphan", order_by="ServicePackage.price"
    )
    orders = relationship("ServiceOrder", back_populates="service")

    @property
    def starting_price(self):
        return min((p.price for p in self.packages), default=None)


class ServicePackage(Base):
    __tablename__ = "service_packages"
    __table_args__ = (UniqueConstraint("service_id", "tier", name="uq_package_tier"),)

    id = Column(Integer, primary_key=True, index=True)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False)
    tier = Column(Enum(PackageTier, native_enum=False, length=16), nullable=False)
    title = Column(String(100), nullable=False)
    description = Column(String(500), nullable=False)
    price = Column(Float, nullable=False)
    delivery_days = Column(Integer, nullable=False)
    revisions = Column(Integer, default=0)
    features = Column(JSON, default=list)

    service = relationship("Service", back_populates="packages")


class ServiceOrder(Base):
    __tablename__ = "service_orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(40), unique=True, nullable=False)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False)
    package_id = Column(Integer, ForeignKey("service_packages.id"), nullable=False)
    client_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    freelancer_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    status = status_column(OrderStatus, OrderStatus.PENDING)
    payment_status = status_column(PaymentStatus, PaymentStatus.PENDING)

    package_price = Column(Float, nullable=False)
    buyer_fee = Column(Float, nullable=False)
    seller_commission = Column(Float, nullable=False)
    total_amount = Column(Float, nullable=False)

    requirements = Column(Text, nullable=True)
    delivery_date = Column(DateTime, nullable=True)
    revisions_used = Column(Integer, default=0)
    cancel_reason = Column(Text, nullable=True)
    dispute_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)
    delivered_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    service = relationship("Service", back_populates="orders")
    package = relationship("ServicePackage")
    client = relationship("User", foreign_keys=[client_id])
    freelancer = relationship("User", foreign_keys=[freelancer_id])
    deliverables = relationship(
        "OrderDeliverable", back_populates="order", cascade="all, delete-orphan",
        order_by="OrderDeliverable.submitted_at.desc()",
    )
    escrow = relationship("Escrow", back_populates="service_order", uselist=False)
    review = relationship("ServiceReview", back_populates="order", uselist=False)

    def is_party(self, user_id):
        return user_id in (self.client_id, self.freelancer_id)

    @property
    def revisions_remaining(self):
        return max(self.package.revisions - self.revisions_used, 0)


class OrderDeliverable(Base):
    __tablename__ = "order_deliverables"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("service_orders.id"), nullable=False)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    files = Column(JSON, default=list)
    revision_note = Column(Text, nullable=True)
    submitted_at = Column(DateTime, default=datetime.now)

    order = relationship("ServiceOrder", back_populates="deliverables")


class Escrow(Base):
    __tablename__ = "escrows"

    id = Column(Integer, primary_key=True, index=True)
    # exactly one of project_id / service_order_id is set
    project_id = Column(Integer, ForeignKey("projects.id"), unique=True, nullable=True)
    service_order_id = Column(Integer, ForeignKey("service_orders.id"), unique=True, nullable=True)
    amount = Column(Float, nullable=False)
    status = status_column(EscrowStatus, EscrowStatus.PENDING)
    payment_reference = Column(String(100), nullable=True)

    created_at = Column(DateTime, default=datetime.now)
    funded_at = Column(DateTime, nullable=True)
    released_at = Column(DateTime, nullable=True)
    refunded_at = Column(DateTime, nullable=True)

    project = relationship("Project", back_populates="escrow")
    service_order = relationship("ServiceOrder", back_populates="escrow")
    transactions = relationship("Transaction", back_populates="escrow", order_by="Transaction.created_at.desc()")

    @property
    def subject(self):
        return self.project if self.project_id else self.service_order

    @property
    def title(self):
        if self.project_id:
            return self.project.title
        return self.service_order.service.title


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    escrow_id = Column(Integer, ForeignKey("escrows.id"), nullable=True)
    # listing upgrades: the listing and tier granted once the charge settles
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="SET NULL"), nullable=True)
    service_id = Column(Integer, ForeignKey("services.id", ondelete="SET NULL"), nullable=True)
    featured_level = Column(Enum(FeaturedLevel, native_enum=False, length=32), nullable=True)
    type = Column(Enum(TransactionType, native_enum=False, length=16), nullable=False)
    amount = Column(Float, nullable=False)
    status = Column(String(20), default="COMPLETED")
    external_reference = Column(String(100), nullable=True)
    description = Column(String(300), nullable=True)
    created_at = Column(DateTime, default=datetime.now)

    user = relationship("User")
    escrow = relationship("Escrow", back_populates="transactions")
    project = relationship("Project")
    service = relationship("Service")


class Payout(Base):
    __tablename__ = "payouts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=True)
    service_order_id = Column(Integer, ForeignKey("service_orders.id"), nullable=True)
    amount = Column(Float, nullable=False)
    payout_method = Column(Enum(PayoutMethod, native_enum=False, length=32), nullable=True)
    payout_email = Column(String(100), nullable=True)
    status = status_column(PayoutStatus, PayoutStatus.PENDING)
    external_reference = Column(String(100), nullable=True)
    failure_reason = Column(Text, nullable=True)
    admin_notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.now)
    processed_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    user = relationship("User")
    project = relationship("Project")
    service_order = relationship("ServiceOrder")


class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=True)
    service_order_id = Column(Integer, ForeignKey("service_orders.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now)

    participants = relationship("ConversationParticipant", back_populates="conversation", cascade="all, delete-orphan")
    messages = relationship(
        "Message", back_populates="conversation", cascade="all, delete-orphan", order_by="Message.created_at"
    )
    project = relationship("Project")
    service_order = relationship("ServiceOrder")

    def participant(self, user_id):
        for p in self.participants:
            if p.user_id == user_id:
                return p
        return None


class ConversationParticipant(Base):
    __tablename__ = "conversation_participants"
    __table_args__ = (UniqueConstraint("conversation_id", "user_id", name="uq_participant"),)

    id = Column(Integer, primary_key=True, index=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    is_archived = Column(Boolean, default=False)
    is_pinned = Column(Boolean, default=False)
    last_read_at = Column(DateTime, nullable=True)

    conversation = relationship("Conversation", back_populates="participants")
    user = relationship("User")


class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id"), nullable=False)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    content = Column(Text, nullable=False)
    type = Column(Enum(MessageType, native_enum=False, length=16), default=MessageType.TEXT)
    attachments = Column(JSON, default=list)
    created_at = Column(DateTime, default=datetime.now)

    conversation = relationship("Conversation", back_populates="messages")
    sender = relationship("User")


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String(50), nullable=False)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    priority = Column(Enum(NotificationPriority, native_enum=False, length=16), default=NotificationPriority.NORMAL)
    data = Column(JSON, default=dict)
    is_read = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.now)
    read_at = Column(DateTime, nullable=True)


class Review(Base):
    __tablename__ = "reviews"
    __table_args__ = (UniqueConstraint("project_id", "reviewer_id", name="uq_review_once_per_project"),)

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False)
    reviewer_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    reviewee_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    rating = Column(Integer, nullable=False)
    communication = Column(Integer, nullable=False)
    quality = Column(Integer, nullable=False)
    timeliness = Column(Integer, nullable=False)
    professionalism = Column(Integer, nullable=False)
    comment = Column(Text, nullable=False)

    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    project = relationship("Project", back_populates="reviews")
    reviewer = relationship("User", foreign_keys=[reviewer_id])
    reviewee = relationship("User", foreign_keys=[reviewee_id])


class ServiceReview(Base):
    __tablename__ = "service_reviews"

    id = Column(Integer, primary_key=True, index=True)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False)
    order_id = Column(Integer, ForeignKey("service_orders.id"), unique=True, nullable=False)
    client_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    freelancer_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    rating = Column(Integer, nullable=False)
    communication = Column(Integer, nullable=True)
    quality = Column(Integer, nullable=True)
    delivery = Column(Integer, nullable=True)
    value = Column(Integer, nullable=True)
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.now)

    order = relationship("ServiceOrder", back_populates="review")
    client = relationship("User", foreign_keys=[client_id])


class ActivityLog(Base):
    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True, index=True)
    admin_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    action = Column(String(50), nullable=False)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(Integer, nullable=True)
    details = Column(JSON, default=dict)
    ip_address = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=datetime.now)

    admin = relationship("User")


class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String(100), unique=True, nullable=False)
    event_type = Column(String(100), nullable=False)
    processed_at = Column(DateTime, default=datetime.now)


class PortfolioCategory(str, enum.Enum):
    WEB_DEVELOPMENT = "WEB_DEVELOPMENT"
    MOBILE_DEVELOPMENT = "MOBILE_DEVELOPMENT"
    DESIGN = "DESIGN"
    WRITING = "WRITING"
    MARKETING = "MARKETING"
    DATA = "DATA"
    OTHER = "OTHER"


class Portfolio(Base):
    __tablename__ = "portfolios"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    category = status_column(PortfolioCategory, PortfolioCategory.OTHER)
    thumbnail = Column(String, nullable=True)
    images = Column(JSON, default=list)
    live_url = Column(String(500), nullable=True)
    code_url = Column(String(500), nullable=True)
    technologies = Column(JSON, default=list)
    duration = Column(String(100), nullable=True)
    client_name = Column(String(100), nullable=True)
    completed_at = Column(DateTime, nullable=False)
    is_public = Column(Boolean, default=True)
    views = Column(Integer, default=0)

    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    user = relationship("User", back_populates="portfolios")


class WorkNote(Base):
    """A freelancer's private note on a project or service order they work on."""
    __tablename__ = "work_notes"
    __table_args__ = (
        UniqueConstraint("user_id", "project_id", name="uq_work_note_project"),
        UniqueConstraint("user_id", "service_order_id", name="uq_work_note_order"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=True)
    service_order_id = Column(Integer, ForeignKey("service_orders.id"), nullable=True)
    note = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)


class Upload(Base):
    __tablename__ = "uploads"

    id = Column(Integer, primary_key=True, index=True)
    stored_name = Column(String(200), unique=True, nullable=False, index=True)
    filename = Column(String(255), nullable=False)
    content_type = Column(String(100), nullable=True)
    size = Column(Integer, nullable=False)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    # who besides the owner may download it
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="SET NULL"), nullable=True)
    service_order_id = Column(Integer, ForeignKey("service_orders.id", ondelete="SET NULL"), nullable=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.now)

    project = relationship("Project")
    service_order = relationship("ServiceOrder")
    conversation = relationship("Conversation")
