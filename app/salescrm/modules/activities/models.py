from __future__ import annotations

from datetime import date as date_type, datetime

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.salescrm.models import Base


class Activity(Base):
    __tablename__ = "activities"
    __table_args__ = (
        Index("idx_activities_sales_rep_id", "sales_rep_id", "date"),
        Index("idx_activities_customer_id", "customer_id"),
        Index("idx_activities_deal_id", "deal_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    activity_type: Mapped[str] = mapped_column(String(32), nullable=False, default="visit")
    date: Mapped[date_type] = mapped_column(Date, nullable=False, default=date_type.today)

    customer_id: Mapped[int] = mapped_column(ForeignKey("customers.id", ondelete="CASCADE"), nullable=False)
    deal_id: Mapped[int | None] = mapped_column(ForeignKey("deals.id", ondelete="SET NULL"), nullable=True)
    sales_rep_id: Mapped[int] = mapped_column(ForeignKey("sales_reps.id", ondelete="CASCADE"), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    customer = relationship("Customer", foreign_keys=[customer_id], lazy="selectin")
    deal = relationship("Deal", foreign_keys=[deal_id], lazy="selectin")
    sales_rep = relationship("SalesRep", foreign_keys=[sales_rep_id], lazy="selectin")
