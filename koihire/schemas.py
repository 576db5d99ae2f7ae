from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, model_validator

from .models import (
    ApplicationStatus, EscrowStatus, FeaturedLevel, MessageType, NotificationPriority, OrderStatus,
    PackageTier, PaymentStatus, PayoutMethod, PayoutStatus, PortfolioCategory, ProjectStatus, Role,
    TransactionType,
)


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


# Users
class UserCreate(BaseModel):
    username: str = Field(min_length=3, max_length=50, pattern=r"^[A-Za-z0-9_.-]+$")
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    role: Role = Role.CLIENT
    first_name: str = Field(default="", max_length=50)
    last_name: str = Field(default="", max_length=50)


class LoginIn(BaseModel):
    # username or email
    username: str
    password: str


class UserBrief(BaseModel):
    id: int
    username: str
    first_name: str
    last_name: str
    rating: float
    review_count: int

    class Config:
        from_attributes = True


class UserPublic(UserBrief):
    role: Role
    bio: Optional[str]
    location: Optional[str]
    skills: List[str] = []
    hourly_rate: Optional[float]
    is_available: bool
    created_at: datetime


class UserOut(UserPublic):
    email: EmailStr
    is_active: bool
    total_earnings: float
    total_spent: float
    payout_method: Optional[PayoutMethod]
    payout_email: Optional[str]


class ProfileUpdate(BaseModel):
    first_name: Optional[str] = Field(default=None, max_length=50)
    last_name: Optional[str] = Field(default=None, max_length=50)
    bio: Optional[str] = Field(default=None, max_length=2000)
    location: Optional[str] = Field(default=None, max_length=100)
    skills: Optional[List[str]] = Field(default=None, max_length=30)
    hourly_rate: Optional[float] = Field(default=None, ge=0)


class PayoutMethodUpdate(BaseModel):
    payout_method: PayoutMethod
    payout_email: Optional[EmailStr] = None
    stripe_connect_account_id: Optional[str] = Field(default=None, max_length=100)

    @model_validator(mode="after")
    def check_destination(self):
        if self.payout_method == PayoutMethod.STRIPE_CONNECT:
            if not self.stripe_connect_account_id:
                raise ValueError("stripe_connect_account_id is required for STRIPE_CONNECT")
        elif not self.payout_email:
            raise ValueError("payout_email is required for PAYPAL and PAYONEER")
        return self


class AvailabilityIn(BaseModel):
    is_available: bool


# Portfolios
class PortfolioCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1, max_length=5000)
    category: PortfolioCategory = PortfolioCategory.OTHER
    thumbnail: Optional[str] = Field(default=None, max_length=500)
    images: List[str] = Field(default=[], max_length=10)
    live_url: Optional[str] = Field(default=None, max_length=500)
    code_url: Optional[str] = Field(default=None, max_length=500)
    technologies: List[str] = Field(default=[], max_length=20)
    duration: Optional[str] = Field(default=None, max_length=100)
    client_name: Optional[str] = Field(default=None, max_length=100)
    completed_at: datetime
    is_public: bool = True


class PortfolioUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, min_length=1, max_length=5000)
    category: Optional[PortfolioCategory] = None
    thumbnail: Optional[str] = Field(default=None, max_length=500)
    images: Optional[List[str]] = Field(default=None, max_length=10)
    live_url: Optional[str] = Field(default=None, max_length=500)
    code_url: Optional[str] = Field(default=None, max_length=500)
    technologies: Optional[List[str]] = Field(default=None, max_length=20)
    duration: Optional[str] = Field(default=None, max_length=100)
    client_name: Optional[str] = Field(default=None, max_length=100)
    completed_at: Optional[datetime] = None
    is_public: Optional[bool] = None


class PortfolioOut(BaseModel):
    id: int
    user: UserBrief
    title: str
    description: str
    category: PortfolioCategory
    thumbnail: Optional[str]
    images: List[str] = []
    live_url: Optional[str]
    code_url: Optional[str]
    technologies: List[str] = []
    duration: Optional[str]
    client_name: Optional[str]
    completed_at: datetime
    is_public: bool
    views: int
    created_at: datetime

    class Config:
        from_attributes = True


class PortfolioPage(BaseModel):
    items: List[PortfolioOut]
    pagination: Pagination


# Work notes
class WorkNoteIn(BaseModel):
    note: str = Field(min_length=1, max_length=5000)


class WorkNoteOut(BaseModel):
    id: int
    project_id: Optional[int]
    service_order_id: Optional[int]
    note: str
    updated_at: datetime

    class Config:
        from_attributes = True


# Categories
class CategoryOut(BaseModel):
    id: int
    name: str
    slug: str
    description: Optional[str]

    class Config:
        from_attributes = True


# Projects
class ProjectCreate(BaseModel):
    title: str = Field(min_length=5, max_length=200)
    description: str = Field(min_length=20, max_length=5000)
    requirements: Optional[str] = Field(default=None, max_length=5000)
    timeline: str = Field(min_length=1, max_length=500)
    category_id: Optional[int] = None
    min_budget: float = Field(gt=0)
    max_budget: float = Field(gt=0)

    @model_validator(mode="after")
    def check_budget(self):
        if self.min_budget > self.max_budget:
            raise ValueError("min_budget cannot exceed max_budget")
        return self


class ProjectUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=5, max_length=200)
    description: Optional[str] = Field(default=None, min_length=20, max_length=5000)
    requirements: Optional[str] = Field(default=None, max_length=5000)
    timeline: Optional[str] = Field(default=None, min_length=1, max_length=500)
    category_id: Optional[int] = None
    min_budget: Optional[float] = Field(default=None, gt=0)
    max_budget: Optional[float] = Field(default=None, gt=0)


class ProjectOut(BaseModel):
    id: int
    title: str
    description: str
    requirements: Optional[str]
    timeline: str
    category: Optional[CategoryOut]
    client: UserBrief
    freelancer: Optional[UserBrief]
    status: ProjectStatus
    min_budget: float
    max_budget: float
    agreed_amount: Optional[float]
    buyer_fee: Optional[float]
    seller_commission: Optional[float]
    total_charged: Optional[float]
    payment_status: PaymentStatus
    featured_level: FeaturedLevel
    featured_until: Optional[datetime]
    cancel_reason: Optional[str]
    change_request: Optional[str]
    dispute_reason: Optional[str]
    timeline_update_reason: Optional[str] = None
    budget_update_reason: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime]

    class Config:
        from_attributes = True


class ProjectPage(BaseModel):
    items: List[ProjectOut]
    pagination: Pagination


class ChangeRequestIn(BaseModel):
    message: str = Field(min_length=1, max_length=500)


class ReasonIn(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=1000)


class DisputeIn(BaseModel):
    reason: str = Field(min_length=10, max_length=2000)


class TimelineUpdateIn(BaseModel):
    timeline: str = Field(min_length=1, max_length=500)
    reason: Optional[str] = Field(default=None, max_length=1000)


class BudgetUpdateIn(BaseModel):
    min_budget: float = Field(gt=0)
    max_budget: float = Field(gt=0)
    reason: Optional[str] = Field(default=None, max_length=1000)

    @model_validator(mode="after")
    def check_budget(self):
        if self.min_budget > self.max_budget:
            raise ValueError("min_budget cannot exceed max_budget")
        return self


class FeatureIn(BaseModel):
    level: FeaturedLevel

    @model_validator(mode="after")
    def check_level(self):
        if self.level == FeaturedLevel.NONE:
            raise ValueError("choose FEATURED, PREMIUM or SPOTLIGHT")
        return self


# Applications
class ApplicationCreate(BaseModel):
    project_id: int
    cover_letter: str = Field(min_length=20, max_length=2000)
    proposed_budget: Optional[float] = Field(default=None, gt=0)
    timeline: str = Field(min_length=5, max_length=500)


class ApplicationUpdate(BaseModel):
    cover_letter: Optional[str] = Field(default=None, min_length=20, max_length=2000)
    proposed_budget: Optional[float] = Field(default=None, gt=0)
    timeline: Optional[str] = Field(default=None, min_length=5, max_length=500)


class ApplicationOut(BaseModel):
    id: int
    project_id: int
    freelancer: UserBrief
    cover_letter: str
    proposed_budget: Optional[float]
    timeline: str
    status: ApplicationStatus
    created_at: datetime

    class Config:
        from_attributes = True


# Services
class PackageIn(BaseModel):
    tier: PackageTier
    title: str = Field(min_length=1, max_length=100)
    description: str = Field(min_length=1, max_length=500)
    price: float = Field(ge=5)
    delivery_days: int = Field(ge=1, le=365)
    revisions: int = Field(default=0, ge=0, le=50)
    features: List[str] = Field(default_factory=list, max_length=20)


class PackageOut(BaseModel):
    id: int
    tier: PackageTier
    title: str
    description: str
    price: float
    delivery_days: int
    revisions: int
    features: List[str] = []

    class Config:
        from_attributes = True


def _check_packages(packages):
    if packages is None:
        return
    tiers = [p.tier for p in packages]
    if len(tiers) != len(set(tiers)):
        raise ValueError("package tiers must be unique")


class ServiceCreate(BaseModel):
    title: str = Field(min_length=5, max_length=200)
    description: str = Field(min_length=20, max_length=5000)
    short_description: Optional[str] = Field(default=None, max_length=300)
    requirements: Optional[str] = Field(default=None, max_length=2000)
    category_id: Optional[int] = None
    tags: List[str] = Field(default_factory=list, max_length=10)
    cover_image: Optional[str] = None
    packages: List[PackageIn] = Field(min_length=1, max_length=3)

    @model_validator(mode="after")
    def check_packages(self):
        _check_packages(self.packages)
        return self


class ServiceUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=5, max_length=200)
    description: Optional[str] = Field(default=None, min_length=20, max_length=5000)
    short_description: Optional[str] = Field(default=None, max_length=300)
    requirements: Optional[str] = Field(default=None, max_length=2000)
    category_id: Optional[int] = None
    tags: Optional[List[str]] = Field(default=None, max_length=10)
    cover_image: Optional[str] = None
    packages: Optional[List[PackageIn]] = Field(default=None, min_length=1, max_length=3)

    @model_validator(mode="after")
    def check_packages(self):
        _check_packages(self.packages)
        return self


class ServiceOut(BaseModel):
    id: int
    title: str
    description: str
    short_description: Optional[str]
    requirements: Optional[str]
    category: Optional[CategoryOut]
    freelancer: UserBrief
    tags: List[str] = []
    cover_image: Optional[str]
    is_active: bool
    featured_level: FeaturedLevel
    featured_until: Optional[datetime]
    rating: float
    review_count: int
    orders_completed: int
    starting_price: Optional[float]
    packages: List[PackageOut]
    created_at: datetime

    class Config:
        from_attributes = True


class ServicePage(BaseModel):
    items: List[ServiceOut]
    pagination: Pagination


class ActiveIn(BaseModel):
    is_active: bool


# Service orders
class OrderCreate(BaseModel):
    service_id: int
    package_id: int
    requirements: Optional[str] = Field(default=None, max_length=5000)


class DeliverIn(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=5000)
    files: List[str] = Field(default_factory=list, max_length=10)


class RevisionIn(BaseModel):
    note: str = Field(min_length=1, max_length=1000)


class DeliverableOut(BaseModel):
    id: int
    title: str
    description: Optional[str]
    files: List[str] = []
    revision_note: Optional[str]
    submitted_at: datetime

    class Config:
        from_attributes = True


class OrderOut(BaseModel):
    id: int
    order_number: str
    service_id: int
    package: PackageOut
    client: UserBrief
    freelancer: UserBrief
    status: OrderStatus
    payment_status: PaymentStatus
    package_price: float
    buyer_fee: float
    seller_commission: float
    total_amount: float
    requirements: Optional[str]
    delivery_date: Optional[datetime]
    revisions_used: int
    revisions_remaining: int
    cancel_reason: Optional[str]
    dispute_reason: Optional[str]
    deliverables: List[DeliverableOut] = []
    created_at: datetime
    delivered_at: Optional[datetime]
    completed_at: Optional[datetime]

    class Config:
        from_attributes = True


class OrderPage(BaseModel):
    items: List[OrderOut]
    pagination: Pagination


class ServiceReviewCreate(BaseModel):
    rating: int = Field(ge=1, le=5)
    communication: Optional[int] = Field(default=None, ge=1, le=5)
    quality: Optional[int] = Field(default=None, ge=1, le=5)
    delivery: Optional[int] = Field(default=None, ge=1, le=5)
    value: Optional[int] = Field(default=None, ge=1, le=5)
    comment: Optional[str] = Field(default=None, max_length=2000)


class ServiceReviewOut(BaseModel):
    id: int
    service_id: int
    order_id: int
    client: UserBrief
    rating: int
    communication: Optional[int]
    quality: Optional[int]
    delivery: Optional[int]
    value: Optional[int]
    comment: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


# Payments
class TransactionOut(BaseModel):
    id: int
    user_id: int
    escrow_id: Optional[int]
    project_id: Optional[int] = None
    service_id: Optional[int] = None
    type: TransactionType
    amount: float
    status: str
    external_reference: Optional[str]
    description: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class TransactionPage(BaseModel):
    items: List[TransactionOut]
    pagination: Pagination


class EscrowOut(BaseModel):
    id: int
    project_id: Optional[int]
    service_order_id: Optional[int]
    amount: float
    status: EscrowStatus
    payment_reference: Optional[str]
    created_at: datetime
    funded_at: Optional[datetime]
    released_at: Optional[datetime]
    refunded_at: Optional[datetime]
    transactions: List[TransactionOut] = []

    class Config:
        from_attributes = True


class PaymentIntentOut(BaseModel):
    escrow: EscrowOut
    client_secret: Optional[str]
    requires_confirmation: bool


class PayoutOut(BaseModel):
    id: int
    user_id: int
    project_id: Optional[int]
    service_order_id: Optional[int]
    amount: float
    payout_method: Optional[PayoutMethod]
    payout_email: Optional[str]
    status: PayoutStatus
    external_reference: Optional[str]
    failure_reason: Optional[str]
    admin_notes: Optional[str]
    created_at: datetime
    processed_at: Optional[datetime]
    completed_at: Optional[datetime]

    class Config:
        from_attributes = True


class PayoutSummary(BaseModel):
    items: List[PayoutOut]
    pending_total: float
    completed_total: float


# Messages
class ConversationStart(BaseModel):
    user_id: int
    project_id: Optional[int] = None
    service_order_id: Optional[int] = None
    message: Optional[str] = Field(default=None, min_length=1, max_length=2000)


class MessageCreate(BaseModel):
    content: str = Field(min_length=1, max_length=2000)
    type: MessageType = MessageType.TEXT
    attachments: List[str] = Field(default_factory=list, max_length=5)


class MessageOut(BaseModel):
    id: int
    conversation_id: int
    sender: UserBrief
    content: str
    type: MessageType
    attachments: List[str] = []
    created_at: datetime

    class Config:
        from_attributes = True


class ConversationOut(BaseModel):
    id: int
    project_id: Optional[int]
    service_order_id: Optional[int]
    participants: List[UserBrief]
    last_message: Optional[MessageOut]
    unread_count: int
    is_archived: bool
    is_pinned: bool
    updated_at: datetime


# Notifications
class NotificationOut(BaseModel):
    id: int
    type: str
    title: str
    message: str
    priority: NotificationPriority
    data: dict = {}
    is_read: bool
    created_at: datetime
    read_at: Optional[datetime]

    class Config:
        from_attributes = True


class NotificationPage(BaseModel):
    items: List[NotificationOut]
    pagination: Pagination
    unread_count: int


# Reviews
class ReviewCreate(BaseModel):
    project_id: int
    rating: int = Field(ge=1, le=5)
    communication: Optional[int] = Field(default=None, ge=1, le=5)
    quality: Optional[int] = Field(default=None, ge=1, le=5)
    timeliness: Optional[int] = Field(default=None, ge=1, le=5)
    professionalism: Optional[int] = Field(default=None, ge=1, le=5)
    comment: str = Field(min_length=10, max_length=2000)


class ReviewUpdate(BaseModel):
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    communication: Optional[int] = Field(default=None, ge=1, le=5)
    quality: Optional[int] = Field(default=None, ge=1, le=5)
    timeliness: Optional[int] = Field(default=None, ge=1, le=5)
    professionalism: Optional[int] = Field(default=None, ge=1, le=5)
    comment: Optional[str] = Field(default=None, min_length=10, max_length=2000)


class ReviewOut(BaseModel):
    id: int
    project_id: int
    reviewer: UserBrief
    reviewee: UserBrief
    rating: int
    communication: int
    quality: int
    timeliness: int
    professionalism: int
    comment: str
    created_at: datetime

    class Config:
        from_attributes = True


# Admin
class UserStatusIn(BaseModel):
    is_active: bool
    reason: Optional[str] = Field(default=None, max_length=500)


class UserRoleIn(BaseModel):
    role: Role


class ProjectStatusIn(BaseModel):
    status: ProjectStatus
    reason: Optional[str] = Field(default=None, max_length=1000)


class PayoutCompleteIn(BaseModel):
    external_reference: Optional[str] = Field(default=None, max_length=100)
    admin_notes: Optional[str] = Field(default=None, max_length=1000)


class PayoutFailIn(BaseModel):
    reason: str = Field(min_length=1, max_length=1000)


class AdminProfileUpdate(BaseModel):
    first_name: Optional[str] = Field(default=None, max_length=50)
    last_name: Optional[str] = Field(default=None, max_length=50)
    email: Optional[EmailStr] = None
    username: Optional[str] = Field(default=None, min_length=3, max_length=50, pattern=r"^[A-Za-z0-9_.-]+$")
    bio: Optional[str] = Field(default=None, max_length=2000)
    location: Optional[str] = Field(default=None, max_length=100)
    payout_method: Optional[PayoutMethod] = None
    payout_email: Optional[EmailStr] = None
    stripe_connect_account_id: Optional[str] = Field(default=None, max_length=100)


class AdminNoteIn(BaseModel):
    notes: Optional[str] = Field(default=None, max_length=1000)


class ActivityLogOut(BaseModel):
    id: int
    admin_id: int
    action: str
    entity_type: str
    entity_id: Optional[int]
    details: dict = {}
    ip_address: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class UserPage(BaseModel):
    items: List[UserOut]
    pagination: Pagination


class EscrowPage(BaseModel):
    items: List[EscrowOut]
    pagination: Pagination


class PayoutPage(BaseModel):
    items: List[PayoutOut]
    pagination: Pagination
    totals: dict


class ActivityLogPage(BaseModel):
    items: List[ActivityLogOut]
    pagination: Pagination
