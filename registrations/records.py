"""
Plain record types passed between the services and the storage backends.

Both stores (in-memory and Django ORM) accept and return these, so the
allocation and payment logic is written once against them.
"""
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional


class PaymentStatus:
    PENDING = 'pending'
    COMPLETED = 'completed'
    VERIFIED = 'verified'
    FAILED = 'failed'
    CANCELLED = 'cancelled'

    CHOICES = [
        (PENDING, 'Pending'),
        (COMPLETED, 'Completed'),
        (VERIFIED, 'Verified'),
        (FAILED, 'Failed'),
        (CANCELLED, 'Cancelled'),
    ]

    # A registration may hold at most one payment in any of these states
    BLOCKING = frozenset({PENDING, COMPLETED, VERIFIED})
    SUCCESSFUL = frozenset({COMPLETED, VERIFIED})


ARRIVAL_PERIOD_CHOICES = [
    ('AM', 'AM'),
    ('PM', 'PM'),
]


def new_payment_id():
    return f"PAY_{uuid.uuid4().hex[:12].upper()}"


def new_mission_id():
    return f"MISSION_{uuid.uuid4().hex[:12].upper()}"


@dataclass
class RegistrationRecord:
    registration_id: str = ''
    first_name: str = ''
    last_name: str = ''
    email: str = ''
    phone: str = ''
    date_of_birth: Optional[date] = None
    gender: str = ''
    address: str = ''
    city: str = ''
    occupation: str = ''
    emergency_contact: str = ''
    emergency_phone: str = ''
    ministry: str = ''
    unit: str = ''
    role: str = ''
    testimony: str = ''
    profile_image: Optional[str] = None
    password_hash: Optional[str] = None
    payment_verified: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def has_password(self):
        return bool(self.password_hash)


@dataclass
class PaymentRecord:
    payment_id: str = field(default_factory=new_payment_id)
    registration_id: Optional[str] = None
    external_ref: Optional[str] = None
    merchant_ref: Optional[str] = None
    amount: Decimal = Decimal('0')
    currency: str = 'KES'
    phone_number: str = ''
    status: str = PaymentStatus.PENDING
    confirmation_code: Optional[str] = None
    transaction_date: Optional[str] = None
    result_desc: Optional[str] = None
    attached_data: dict = field(default_factory=dict)
    verified_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_blocking(self):
        return self.status in PaymentStatus.BLOCKING

    @property
    def is_successful(self):
        return self.status in PaymentStatus.SUCCESSFUL


@dataclass
class MissionRegistrationRecord:
    mission_id: str = field(default_factory=new_mission_id)
    registration_id: str = ''
    official_name: str = ''
    email: str = ''
    area_of_residence: str = ''
    contacts: str = ''
    ministry: str = ''
    health_history: str = ''
    arrival_date: str = ''
    arrival_time: str = ''
    arrival_period: str = ''
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class ProviderResult:
    """A payment-provider status signal, normalized to M-Pesa result codes (0 = success)."""
    external_ref: Optional[str]
    result_code: Optional[int]
    result_desc: str = ''
    receipt: dict = field(default_factory=dict)
    raw: Any = None

    @property
    def is_success(self):
        return self.result_code == 0

    @property
    def is_final(self):
        return self.result_code is not None


@dataclass
class StatusQueryResult:
    external_ref: str
    result_code: str
    result_desc: str
    payment: Optional[PaymentRecord] = None
    provider_data: Any = None
