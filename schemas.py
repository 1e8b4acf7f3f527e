"""
Campus Marketplace Database Schemas (MongoDB via Pydantic)

Each Pydantic model maps to one MongoDB collection using the lowercase class name.
Example: class TalentProduct -> collection "talentproduct"

References to other documents are ObjectIds; they are typed loosely (Any) so
that documents built here can be inserted as-is.
"""
from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field, EmailStr
from typing import Any, Dict, List, Optional, Literal
from datetime import datetime

Role = Literal["user", "admin"]
ItemStatus = Literal["available", "reserved", "sold", "inactive"]
ItemCondition = Literal["New", "Like New", "Good", "Fair", "Poor"]
ReportReason = Literal["spam", "inappropriate", "fake", "sold", "other"]
TalentStatus = Literal["available", "busy", "unavailable"]
TalentCategory = Literal[
    "Art", "Craft", "Code", "Design", "Writing", "Music", "Photography", "Video", "Tutoring", "Other"
]
TalentType = Literal["physical", "digital", "service"]
OrderType = Literal["item", "talent"]
OrderStatus = Literal["pending", "paid", "delivered", "completed", "cancelled", "refunded"]
PaymentMethod = Literal["razorpay", "upi", "cash", "other"]
PaymentStatus = Literal["pending", "completed", "failed", "refunded", "disputed"]
EscrowStatus = Literal["held", "frozen", "released", "refunded"]
CommissionStatus = Literal["calculated", "processed", "paid"]
ReviewType = Literal["item", "talent", "user"]
MessageType = Literal["text", "image", "file", "system"]


class _Document(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)


class UserStats(BaseModel):
    itemsSold: int = 0
    itemsBought: int = 0
    talentProductsSold: int = 0
    rating: float = Field(0, ge=0, le=5)
    totalRatings: int = 0


class Wishlist(_Document):
    items: List[Any] = []
    talentProducts: List[Any] = []


class User(_Document):
    name: str = Field(..., max_length=50)
    email: EmailStr
    passwordHash: str
    phone: Optional[str] = None
    bio: str = ""
    hostel: Optional[str] = None
    room: Optional[str] = None
    whatsapp: Optional[str] = None
    upiId: Optional[str] = None
    role: Role = "user"
    isActive: bool = True
    stats: UserStats = UserStats()
    wishlist: Wishlist = Wishlist()


class ItemAvailability(_Document):
    status: ItemStatus = "available"
    reservedBy: Optional[Any] = None
    reservedAt: Optional[datetime] = None
    soldTo: Optional[Any] = None
    soldAt: Optional[datetime] = None


class Item(_Document):
    title: str = Field(..., max_length=100)
    description: str = Field(..., max_length=1000)
    price: float = Field(..., ge=0, le=1000000)
    originalPrice: Optional[float] = Field(None, ge=0)
    category: str
    subcategory: Optional[str] = None
    condition: ItemCondition
    images: List[str] = []
    seller: Any
    tags: List[str] = []
    negotiable: bool = True
    urgent: bool = False
    availability: ItemAvailability = ItemAvailability()
    views: int = 0
    likes: List[Dict[str, Any]] = []
    reports: List[Dict[str, Any]] = []
    isActive: bool = True


class TalentPackage(BaseModel):
    name: str
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    deliveryTime: Optional[str] = None
    features: List[str] = []


class TalentPricing(BaseModel):
    basePrice: float = Field(..., ge=0)
    packages: List[TalentPackage] = []


class TalentAvailability(BaseModel):
    status: TalentStatus = "available"
    slots: Optional[int] = Field(None, ge=0)
    bookedSlots: int = 0


class TalentStats(BaseModel):
    views: int = 0
    orders: int = 0
    rating: float = 0
    totalReviews: int = 0


class TalentProduct(_Document):
    name: str = Field(..., max_length=100)
    description: str = Field(..., max_length=2000)
    price: float = Field(..., ge=0, le=100000)
    category: TalentCategory
    type: TalentType = "service"
    creator: Any
    images: List[str] = []
    tags: List[str] = []
    pricing: TalentPricing
    availability: TalentAvailability = TalentAvailability()
    stats: TalentStats = TalentStats()
    isActive: bool = True


class OrderMessage(_Document):
    sender: Any
    message: str = Field(..., max_length=500)
    timestamp: datetime
    isRead: bool = False


class Order(_Document):
    orderId: str
    buyer: Any
    seller: Any
    item: Optional[Any] = None
    talentProduct: Optional[Any] = None
    type: OrderType
    category: Optional[str] = None
    amount: float = Field(..., ge=0)
    paymentMethod: PaymentMethod
    paymentDetails: Dict[str, Any] = {}
    status: OrderStatus = "pending"
    statusHistory: List[Dict[str, Any]] = []
    deliveryInfo: Dict[str, Any] = {}
    communication: List[Dict[str, Any]] = []
    rating: Dict[str, Any] = {}
    metadata: Dict[str, Any] = {}


class Payment(_Document):
    paymentId: str
    order: Any
    buyer: Any
    seller: Any
    totalAmount: float = Field(..., ge=0)
    commissionRate: float = 3
    platformCommission: float
    sellerAmount: float
    gateway: PaymentMethod = "razorpay"
    gatewayOrderId: Optional[str] = None
    gatewayPaymentId: Optional[str] = None
    gatewaySignature: Optional[str] = None
    currency: str = "INR"
    status: PaymentStatus = "pending"
    escrowStatus: EscrowStatus = "held"
    verificationStatus: Literal["pending", "verified", "rejected"] = "pending"
    deliveryConfirmed: bool = False
    disputeRaised: bool = False
    commissionPaid: bool = False


class CategoryShare(BaseModel):
    category: str
    commission: float
    transactions: int
    volume: float


class SellerShare(_Document):
    seller: Any
    commissionGenerated: float
    transactions: int
    volume: float


class Commission(_Document):
    year: int
    month: int = Field(..., ge=1, le=12)
    batchId: str
    totalCommission: float = 0
    totalTransactions: int = 0
    totalVolume: float = 0
    averageCommissionRate: float = 3
    categoryBreakdown: List[CategoryShare] = []
    topSellers: List[SellerShare] = []
    status: CommissionStatus = "calculated"
    calculatedBy: Optional[Any] = None


class Review(_Document):
    reviewer: Any
    reviewee: Any
    order: Any
    item: Optional[Any] = None
    talentProduct: Optional[Any] = None
    type: ReviewType
    rating: int = Field(..., ge=1, le=5)
    title: str = Field(..., max_length=100)
    comment: str = Field(..., max_length=1000)
    images: List[str] = []
    isVerified: bool = False
    helpfulVotes: int = 0
    votedBy: List[Dict[str, Any]] = []
    isActive: bool = True
    moderationStatus: Literal["pending", "approved", "rejected"] = "approved"


class Conversation(_Document):
    """Direct conversation between two users.

    ``participantKey`` is the two user ids sorted and joined, unique per pair.
    """
    participants: List[Any]
    participantKey: str
    type: Literal["direct"] = "direct"
    title: Optional[str] = Field(None, max_length=100)
    relatedOrder: Optional[Any] = None
    relatedItem: Optional[Any] = None
    relatedTalentProduct: Optional[Any] = None
    lastMessage: Optional[Any] = None
    lastActivity: Optional[datetime] = None
    isActive: bool = True
    createdBy: Optional[Any] = None


class Message(_Document):
    conversation: Any
    sender: Any
    content: str = Field(..., max_length=1000)
    type: MessageType = "text"
    attachments: List[str] = []
    replyTo: Optional[Any] = None
    readBy: List[Dict[str, Any]] = []
    isEdited: bool = False
    editedAt: Optional[datetime] = None
    isDeleted: bool = False
    deletedAt: Optional[datetime] = None


class CategoryStats(BaseModel):
    itemCount: int = 0
    talentProductCount: int = 0


class Category(_Document):
    name: str = Field(..., max_length=50)
    slug: str
    description: Optional[str] = Field(None, max_length=200)
    icon: Optional[str] = None
    color: Optional[str] = None
    subcategories: List[str] = []
    order: int = 0
    isFeatured: bool = False
    isActive: bool = True
    stats: CategoryStats = CategoryStats()
    createdBy: Optional[Any] = None
