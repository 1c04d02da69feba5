import datetime as dt
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import (
    AppointmentStatus, BillingCycle, PaymentMethod, PaymentStatus, SubscriptionStatus, UserRole,
)

HHMM = r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$"


def _strip_time(v):
    # "2024-01-10T15:30:00" también vale: se queda el día
    if isinstance(v, dt.datetime):
        return v.date()
    if isinstance(v, str) and "T" in v:
        return v.split("T", 1)[0]
    return v


# ====== Decisiones del gate ======
class FeatureStatus(str, Enum):
    enabled = "enabled"
    disabled = "disabled"
    unknown = "unknown"


class LimitDecision(BaseModel):
    kind: str
    permitted: bool
    current: int
    limit: Optional[int] = None
    message: str


class FeatureDecision(BaseModel):
    feature: str
    permitted: bool
    status: FeatureStatus
    package: str
    message: str


# ====== Citas ======
class AppointmentCreate(BaseModel):
    patient_id: int
    doctor_id: int
    clinic_id: Optional[int] = None
    date: dt.date
    time: str = Field(pattern=HHMM)
    reason: Optional[str] = None
    diagnosis: Optional[str] = None
    treatment: Optional[str] = None
    notes: Optional[str] = None
    cost: Optional[float] = Field(default=None, gt=0)
    status: AppointmentStatus = AppointmentStatus.pending

    @field_validator("date", mode="before")
    @classmethod
    def day_only(cls, v):
        return _strip_time(v)


class AppointmentUpdate(BaseModel):
    patient_id: Optional[int] = None
    doctor_id: Optional[int] = None
    date: Optional[dt.date] = None
    time: Optional[str] = Field(default=None, pattern=HHMM)
    reason: Optional[str] = None
    diagnosis: Optional[str] = None
    treatment: Optional[str] = None
    notes: Optional[str] = None
    cost: Optional[float] = Field(default=None, gt=0)
    status: Optional[AppointmentStatus] = None

    @field_validator("date", mode="before")
    @classmethod
    def day_only(cls, v):
        return _strip_time(v)


class AppointmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    patient_id: int
    doctor_id: int
    clinic_id: int
    date: dt.date
    time: str
    reason: Optional[str] = None
    diagnosis: Optional[str] = None
    treatment: Optional[str] = None
    notes: Optional[str] = None
    cost: Optional[float] = None
    status: AppointmentStatus


class SlotsResponse(BaseModel):
    doctor_id: int
    date: dt.date
    slots: List[str]


# ====== Usuarios ======
class UserCreate(BaseModel):
    name: str = Field(min_length=1)
    email: str = Field(min_length=3)
    role: UserRole = UserRole.receptionist
    clinic_id: Optional[int] = None
    cedulas: List[str] = []


class UserUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[UserRole] = None
    cedulas: Optional[List[str]] = None


class UserStatusUpdate(BaseModel):
    is_active: bool


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    role: UserRole
    clinic_id: int
    is_active: bool
    cedulas: List[str] = []


# ====== Pacientes ======
class PatientCreate(BaseModel):
    full_name: str = Field(min_length=1)
    age: Optional[int] = Field(default=None, ge=0, le=150)
    gender: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    allergies: Optional[str] = None
    notes: Optional[str] = None


class PatientOut(PatientCreate):
    model_config = ConfigDict(from_attributes=True)

    id: int
    clinic_id: int


# ====== Consultorios ======
class ClinicCreate(BaseModel):
    name: str = Field(min_length=1)
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    open_hour: Optional[str] = Field(default=None, pattern=HHMM)
    close_hour: Optional[str] = Field(default=None, pattern=HHMM)


class ClinicUpdate(BaseModel):
    name: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    open_hour: Optional[str] = Field(default=None, pattern=HHMM)
    close_hour: Optional[str] = Field(default=None, pattern=HHMM)


class ClinicOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    open_hour: Optional[str] = None
    close_hour: Optional[str] = None
    package_name: str
    subscription_status: SubscriptionStatus
    subscription_started_at: Optional[dt.datetime] = None
    subscription_expires_at: Optional[dt.datetime] = None
    billing_cycle: BillingCycle


# ====== Paquetes ======
class PackageLimits(BaseModel):
    max_clinics: Optional[int] = 1
    max_doctors: Optional[int] = 1
    max_receptionists: Optional[int] = 1
    max_patients: Optional[int] = None
    max_appointments: Optional[int] = None


class PackageIn(PackageLimits):
    name: str = Field(min_length=1)
    display_name: str
    description: str = ""
    monthly_price: float = Field(ge=0)
    annual_price: float = Field(ge=0)
    stripe_price_monthly: Optional[str] = None
    stripe_price_annual: Optional[str] = None
    features: Dict[str, bool] = {}
    active: bool = True
    sort_order: int = 0

    @field_validator("name")
    @classmethod
    def slug(cls, v: str) -> str:
        return v.strip().lower()


class PackageUpdate(BaseModel):
    name: Optional[str] = None
    display_name: Optional[str] = None
    description: Optional[str] = None
    monthly_price: Optional[float] = Field(default=None, ge=0)
    annual_price: Optional[float] = Field(default=None, ge=0)
    stripe_price_monthly: Optional[str] = None
    stripe_price_annual: Optional[str] = None
    max_clinics: Optional[int] = None
    max_doctors: Optional[int] = None
    max_receptionists: Optional[int] = None
    max_patients: Optional[int] = None
    max_appointments: Optional[int] = None
    features: Optional[Dict[str, bool]] = None
    active: Optional[bool] = None
    sort_order: Optional[int] = None


class ChangePackageRequest(BaseModel):
    package: str
    billing_cycle: BillingCycle = BillingCycle.monthly


class AdminClinicPackageUpdate(BaseModel):
    package: str
    billing_cycle: Optional[BillingCycle] = None
    status: Optional[SubscriptionStatus] = None
    expires_at: Optional[dt.datetime] = None


# ====== Pagos ======
class PaymentCreate(BaseModel):
    appointment_id: int
    amount: float = Field(ge=0)
    method: PaymentMethod
    status: PaymentStatus = PaymentStatus.pending
    paid_at: Optional[dt.datetime] = None
    comments: Optional[str] = None


class PaymentUpdate(BaseModel):
    amount: Optional[float] = Field(default=None, ge=0)
    method: Optional[PaymentMethod] = None
    status: Optional[PaymentStatus] = None
    paid_at: Optional[dt.datetime] = None
    comments: Optional[str] = None


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    appointment_id: int
    clinic_id: int
    amount: float
    method: PaymentMethod
    status: PaymentStatus
    paid_at: dt.datetime
    comments: Optional[str] = None


# ====== Stripe ======
class CheckoutRequest(BaseModel):
    package: str
    billing_cycle: BillingCycle = BillingCycle.monthly


# ====== IA ======
class TreatmentRequest(BaseModel):
    diagnosis: str
    age: Optional[int] = None
    weight: Optional[float] = None
    gender: Optional[str] = None
    allergies: List[str] = []


class TreatmentSuggestion(BaseModel):
    treatment: str = ""
    medications: List[Dict[str, Any]] = []
    notes: str = ""
    warnings: List[str] = []
