# dosewatch/db/models.py
from __future__ import annotations

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    MetaData,
    SmallInteger,
    String,
    Table,
    Text,
    Time,
)

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("first_name", String(100), nullable=False),
    Column("last_name", String(100), nullable=False, default=""),
    Column("phone_number", String(32), nullable=True),
    Column("push_token", String(255), nullable=True),
    Column("notifications_enabled", Boolean, nullable=False, default=True),
    Column("user_type", String(16), nullable=False),  # 'patient' | 'tutor' | 'doctor'
)

user_relationships = Table(
    "user_relationships",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("patient_id", String(36), ForeignKey("users.id"), nullable=False),
    Column("caregiver_id", String(36), ForeignKey("users.id"), nullable=False),
    Column("role", String(16), nullable=False),  # 'tutor' | 'doctor'
    Column("is_active", Boolean, nullable=False, default=True),
    Index("ix_rel_patient", "patient_id", "is_active"),
)

medications = Table(
    "medications",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(200), nullable=False),
    Column("dosage", String(100), nullable=True),
)

voice_messages = Table(
    "voice_messages",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("patient_id", String(36), ForeignKey("users.id"), nullable=False),
    Column("file_url", String(500), nullable=False),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", DateTime, nullable=False),  # UTC naive
)

prescriptions = Table(
    "prescriptions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("patient_id", String(36), ForeignKey("users.id"), nullable=False),
    Column("medication_id", String(36), ForeignKey("medications.id"), nullable=False),
    Column("custom_dosage", String(100), nullable=True),
    Column("instructions", Text, nullable=True),
    Column("start_date", Date, nullable=False),
    Column("end_date", Date, nullable=True),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("voice_message_id", String(36), ForeignKey("voice_messages.id"), nullable=True),
)

medication_schedules = Table(
    "medication_schedules",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("prescription_id", String(36), ForeignKey("prescriptions.id"), nullable=False),
    Column("time_of_day", Time, nullable=False),  # local wall clock, config.TZ
    Column("days_of_week", JSON, nullable=False),  # [1..7], 1=Monday
    Column("kind", String(16), nullable=False, default="daily"),  # 'daily' | 'interval'
    Column("interval_hours", SmallInteger, nullable=True),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("last_generated_at", DateTime, nullable=True),  # UTC naive
)

schedule_exceptions = Table(
    "schedule_exceptions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("schedule_id", String(36), ForeignKey("medication_schedules.id"), nullable=False),
    Column("exception_date", Date, nullable=False),
    Column("reason", String(255), nullable=True),
    Index("ix_exc_schedule_date", "schedule_id", "exception_date"),
)

medication_reminders = Table(
    "medication_reminders",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("prescription_id", String(36), ForeignKey("prescriptions.id"), nullable=False),
    Column("patient_id", String(36), ForeignKey("users.id"), nullable=False),
    Column("scheduled_for", DateTime, nullable=False),  # UTC naive
    Column("status", String(20), nullable=False, default="scheduled"),
    Column("notified", Boolean, nullable=False, default=False),
    Column("notified_at", DateTime, nullable=True),
    Column("confirmed_at", DateTime, nullable=True),
    Column("confirmed_by", String(36), nullable=True),
    Column("snoozed_until", DateTime, nullable=True),
    Column("escalated", Boolean, nullable=False, default=False),
    Column("escalated_at", DateTime, nullable=True),
    Column("voice_message_id", String(36), ForeignKey("voice_messages.id"), nullable=True),
    Column("created_at", DateTime, nullable=False),
    # no unique constraint on (prescription_id, scheduled_for): writers re-check
    Index("ix_rem_due", "status", "notified", "scheduled_for"),
    Index("ix_rem_rx_time", "prescription_id", "scheduled_for"),
)

reminder_delivery_logs = Table(
    "reminder_delivery_logs",
    metadata,
    Column("id", String(36), primary_key=True),
    Column(
        "reminder_id",
        String(36),
        ForeignKey("medication_reminders.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("channel", String(10), nullable=False),  # 'push' | 'sms'
    Column("provider", String(40), nullable=False),
    Column("status", String(10), nullable=False),  # 'sent' | 'failed'
    Column("provider_message_id", String(120), nullable=True),
    Column("error", Text, nullable=True),
    Column("created_at", DateTime, nullable=False),
)

alerts = Table(
    "alerts",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("patient_id", String(36), ForeignKey("users.id"), nullable=False),
    Column("caregiver_id", String(36), ForeignKey("users.id"), nullable=False),
    Column(
        "reminder_id",
        String(36),
        ForeignKey("medication_reminders.id", ondelete="SET NULL"),
        nullable=True,
    ),
    Column("alert_type", String(40), nullable=False),  # 'missed_medication'
    Column("title", String(200), nullable=False),
    Column("message", Text, nullable=False),
    Column("is_read", Boolean, nullable=False, default=False),
    Column("read_at", DateTime, nullable=True),
    Column("status", String(20), nullable=False, default="open"),  # 'open' | 'acknowledged'
    Column("created_at", DateTime, nullable=False),
)

medication_confirmations = Table(
    "medication_confirmations",
    metadata,
    Column("id", String(36), primary_key=True),
    Column(
        "reminder_id",
        String(36),
        ForeignKey("medication_reminders.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    ),
    Column("confirmed_by", String(36), nullable=False),
    Column("confirmation_type", String(20), nullable=False),  # 'patient' | 'caregiver_manual'
    Column("confirmed_at", DateTime, nullable=False),
)
