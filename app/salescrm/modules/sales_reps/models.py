from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.salescrm.models import Base, User


class Department(Base):
    __tablename__ = "departments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    groups: Mapped[list["DepartmentGroup"]] = relationship(
        "DepartmentGroup",
        back_populates="department",
        cascade="all, delete-orphan",
        order_by="DepartmentGroup.name",
        lazy="selectin",
    )


class DepartmentGroup(Base):
    __tablename__ = "department_groups"
    __table_args__ = (
        Index("idx_department_groups_department_id", "department_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    department_id: Mapped[int] = mapped_column(ForeignKey("departments.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    department: Mapped[Department] = relationship("Department", back_populates="groups", lazy="selectin")


class SalesRep(Base):
    """
    Sales rep profile linked 1:1 to a login user.
    The role decides whose records the rep can see.
    """

    __tablename__ = "sales_reps"
    __table_args__ = (
        Index("idx_sales_reps_name", "name"),
        Index("idx_sales_reps_department_id", "department_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=True, unique=True
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="sales_rep")
    department_id: Mapped[int | None] = mapped_column(ForeignKey("departments.id", ondelete="SET NULL"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    user: Mapped[User | None] = relationship("User", back_populates="sales_rep", lazy="selectin")
    department: Mapped[Department | None] = relationship("Department", lazy="selectin")
    group_membership: Mapped["SalesRepGroup | None"] = relationship(
        "SalesRepGroup",
        back_populates="sales_rep",
        uselist=False,
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def group(self) -> DepartmentGroup | None:
        return self.group_membership.group if self.group_membership else None


class SalesRepGroup(Base):
    __tablename__ = "sales_rep_groups"
    __table_args__ = (
        Index("idx_sales_rep_groups_group_id", "group_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    sales_rep_id: Mapped[int] = mapped_column(
        ForeignKey("sales_reps.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    group_id: Mapped[int] = mapped_column(ForeignKey("department_groups.id", ondelete="CASCADE"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    sales_rep: Mapped[SalesRep] = relationship("SalesRep", back_populates="group_membership", lazy="selectin")
    group: Mapped[DepartmentGroup] = relationship("DepartmentGroup", lazy="selectin")
