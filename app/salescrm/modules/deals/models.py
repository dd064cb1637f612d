from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import BigInteger, Date, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.salescrm.models import Base


class Deal(Base):
    """
    Sales opportunity. Amounts are whole yen.
    Status is free-form within DEAL_STATUSES; any status may follow any other.
    """

    __tablename__ = "deals"
    __table_args__ = (
        Index("idx_deals_sales_rep_id", "sales_rep_id"),
        Index("idx_deals_customer_id", "customer_id"),
        Index("idx_deals_status", "status"),
        Index("idx_deals_updated_at", "updated_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    customer_id: Mapped[int] = mapped_column(ForeignKey("customers.id", ondelete="CASCADE"), nullable=False)
    sales_rep_id: Mapped[int] = mapped_column(ForeignKey("sales_reps.id", ondelete="CASCADE"), nullable=False)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default="negotiation")
    amount: Mapped[int | None] = mapped_column(BigInteger, nullable=True, default=0)
    gross_profit: Mapped[int | None] = mapped_column(BigInteger, nullable=True, default=0)
    category: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    expected_close_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    customer = relationship("Customer", foreign_keys=[customer_id], lazy="selectin")
    sales_rep = relationship("SalesRep", foreign_keys=[sales_rep_id], lazy="selectin")
