# miconsultorio/models.py
from typing import Optional, List
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import (
    Integer, String, Date, DateTime, Enum, ForeignKey, Boolean, Text, Float, JSON,
    Index, text,
)
from datetime import date as calendar_date, datetime
import enum
from .database import Base


class UserRole(str, enum.Enum):
    admin = "admin"
    doctor = "doctor"
    receptionist = "receptionist"


class AppointmentStatus(str, enum.Enum):
    pending = "pending"
    confirmed = "confirmed"
    completed = "completed"
    cancelled = "cancelled"


class SubscriptionStatus(str, enum.Enum):
    trial = "trial"
    active = "active"
    expired = "expired"
    cancelled = "cancelled"


class BillingCycle(str, enum.Enum):
    monthly = "monthly"
    annual = "annual"


class PaymentMethod(str, enum.Enum):
    cash = "cash"
    card = "card"
    transfer = "transfer"


class PaymentStatus(str, enum.Enum):
    paid = "paid"
    pending = "pending"


class Package(Base):
    __tablename__ = "packages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    # slug en minúsculas: basico, profesional, clinica
    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    monthly_price: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    annual_price: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    stripe_price_monthly: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    stripe_price_annual: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)

    # Límites: NULL = ilimitado (el "1 por defecto" vive en PackageLimits)
    max_clinics: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    max_doctors: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    max_receptionists: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    max_patients: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, default=None)
    max_appointments: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, default=None)

    # Features
    upload_documents: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    upload_images: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    advanced_reports: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    integrations: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    priority_support: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # Nombre público del flag → atributo
    FEATURES = {
        "uploadDocumentos": "upload_documents",
        "uploadImagenes": "upload_images",
        "reportesAvanzados": "advanced_reports",
        "integraciones": "integrations",
        "soportePrioritario": "priority_support",
    }

    def features(self) -> dict:
        return {name: bool(getattr(self, attr)) for name, attr in self.FEATURES.items()}


class Clinic(Base):
    __tablename__ = "clinics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    address: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    # HH:MM
    open_hour: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)
    close_hour: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)

    # Referencia por nombre al paquete (no FK: el paquete es catálogo compartido)
    package_name: Mapped[str] = mapped_column(String(50), nullable=False, default="basico", index=True)
    subscription_status: Mapped[SubscriptionStatus] = mapped_column(
        Enum(SubscriptionStatus, name="subscription_status"),
        nullable=False,
        default=SubscriptionStatus.trial,
    )
    subscription_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, default=datetime.utcnow)
    subscription_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    billing_cycle: Mapped[BillingCycle] = mapped_column(
        Enum(BillingCycle, name="billing_cycle"),
        nullable=False,
        default=BillingCycle.monthly,
    )
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(String(120), nullable=True, index=True)
    stripe_subscription_id: Mapped[Optional[str]] = mapped_column(String(120), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    users = relationship("User", back_populates="clinic", cascade="all, delete-orphan")
    patients = relationship("Patient", back_populates="clinic", cascade="all, delete-orphan")
    appointments = relationship("Appointment", back_populates="clinic", cascade="all, delete-orphan")


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(200), unique=True, nullable=False, index=True)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, name="user_role"), nullable=False, default=UserRole.receptionist, index=True
    )
    clinic_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("clinics.id", ondelete="CASCADE"), nullable=False, index=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    # Cédulas profesionales
    cedulas: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    clinic = relationship("Clinic", back_populates="users")


class Patient(Base):
    __tablename__ = "patients"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    clinic_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("clinics.id", ondelete="CASCADE"), nullable=False, index=True
    )
    full_name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    age: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    gender: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(40), nullable=True, index=True)
    email: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    allergies: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    clinic = relationship("Clinic", back_populates="patients")
    appointments = relationship("Appointment", back_populates="patient", cascade="all, delete-orphan")


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        # Un solo turno activo por (doctor, día, hora). Las canceladas liberan el slot.
        Index(
            "uq_appointments_doctor_slot",
            "doctor_id", "date", "time",
            unique=True,
            sqlite_where=text("status != 'cancelled'"),
            postgresql_where=text("status != 'cancelled'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    patient_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True
    )
    doctor_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=False, index=True
    )
    clinic_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("clinics.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # Día calendario (sin hora)
    date: Mapped[calendar_date] = mapped_column(Date, nullable=False, index=True)
    # HH:MM
    time: Mapped[str] = mapped_column(String(5), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    diagnosis: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    treatment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cost: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    status: Mapped[AppointmentStatus] = mapped_column(
        Enum(AppointmentStatus, name="appointment_status"),
        nullable=False,
        default=AppointmentStatus.pending,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    patient = relationship("Patient", back_populates="appointments")
    doctor = relationship("User")
    clinic = relationship("Clinic", back_populates="appointments")
    payments = relationship("Payment", back_populates="appointment", cascade="all, delete-orphan")


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    appointment_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    clinic_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("clinics.id", ondelete="CASCADE"), nullable=False, index=True
    )
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    method: Mapped[PaymentMethod] = mapped_column(Enum(PaymentMethod, name="payment_method"), nullable=False)
    paid_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus, name="payment_status"), nullable=False, default=PaymentStatus.pending, index=True
    )
    comments: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    appointment = relationship("Appointment", back_populates="payments")
