"""
Cost Tracking Models

Platform-level operating costs (infrastructure, APIs, licenses...). These
rows belong to the platform operator, not to a tenant; tenant_id on a
CostEntry only attributes the cost to a customer when known.
"""
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Index, Integer, Float, Text, JSON
from datetime import datetime
from fitos.database import Base
import uuid


class CostCategory:
    INFRASTRUCTURE = "INFRASTRUCTURE"
    API_SERVICES = "API_SERVICES"
    STORAGE = "STORAGE"
    DATABASE = "DATABASE"
    MONITORING = "MONITORING"
    SECURITY = "SECURITY"
    PAYMENT_PROCESSING = "PAYMENT_PROCESSING"
    MARKETING = "MARKETING"
    LICENSES = "LICENSES"
    OTHER = "OTHER"

    ALL = (
        INFRASTRUCTURE, API_SERVICES, STORAGE, DATABASE, MONITORING,
        SECURITY, PAYMENT_PROCESSING, MARKETING, LICENSES, OTHER,
    )


class AlertType:
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"
    LIMIT_REACHED = "LIMIT_REACHED"


class CostEntry(Base):
    __tablename__ = "cost_entries"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    category = Column(String(30), nullable=False, index=True)
    service = Column(String(100), nullable=False, index=True)
    amount = Column(Float, nullable=False)
    currency = Column(String(3), default="BRL", nullable=False)

    date = Column(DateTime, nullable=False, index=True)
    # Denormalized for monthly aggregation
    month = Column(Integer, nullable=False)
    year = Column(Integer, nullable=False)

    description = Column(Text, nullable=True)
    tags = Column(JSON, nullable=False, default=list)

    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="SET NULL"), nullable=True, index=True)
    created_by = Column(String(36), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('idx_cost_year_month', 'year', 'month'),
    )

    def __repr__(self):
        return f"<CostEntry {self.category}/{self.service} {self.amount}>"


class CostBudget(Base):
    __tablename__ = "cost_budgets"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # NULL category = overall budget
    category = Column(String(30), nullable=True, index=True)
    monthly_limit = Column(Float, nullable=False)
    currency = Column(String(3), default="BRL", nullable=False)

    alert_at_75 = Column(Boolean, default=True, nullable=False)
    alert_at_90 = Column(Boolean, default=True, nullable=False)

    start_date = Column(DateTime, default=datetime.utcnow, nullable=False)
    end_date = Column(DateTime, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<CostBudget {self.category or 'overall'} {self.monthly_limit}>"


class CostAlert(Base):
    __tablename__ = "cost_alerts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    budget_id = Column(
        String(36),
        ForeignKey("cost_budgets.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    alert_type = Column(String(20), nullable=False)
    severity = Column(String(10), nullable=False)  # low, medium, high
    current_cost = Column(Float, nullable=False)
    limit_amount = Column(Float, nullable=False)
    percentage = Column(Float, nullable=False)
    message = Column(Text, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False, index=True)
    acknowledged_at = Column(DateTime, nullable=True)
    acknowledged_by = Column(String(36), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('idx_alert_budget_type_active', 'budget_id', 'alert_type', 'is_active'),
    )

    def __repr__(self):
        return f"<CostAlert {self.alert_type} {self.percentage:.1f}%>"
