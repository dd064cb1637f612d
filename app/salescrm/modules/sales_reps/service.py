from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from app.salescrm.audit import record_event
from app.salescrm.constants import ROLE_SALES_REP, ROLES
from app.salescrm.models import User
from app.salescrm.modules.sales_reps.models import Department, DepartmentGroup, SalesRep, SalesRepGroup
from app.salescrm.utils import normalize_text

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidationError:
    field: str
    message: str


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def list_sales_reps(s: Session, *, department_id: int | None = None) -> list[SalesRep]:
    query = s.query(SalesRep)
    if department_id is not None:
        query = query.filter(SalesRep.department_id == department_id)
    return query.order_by(SalesRep.name.asc(), SalesRep.id.asc()).all()


def get_sales_rep(s: Session, sales_rep_id: int) -> SalesRep | None:
    return s.query(SalesRep).filter(SalesRep.id == sales_rep_id).one_or_none()


def list_departments(s: Session) -> list[Department]:
    return s.query(Department).order_by(Department.name.asc()).all()


def get_department(s: Session, department_id: int) -> Department | None:
    return s.query(Department).filter(Department.id == department_id).one_or_none()


def list_department_groups(s: Session, department_id: int) -> list[DepartmentGroup]:
    return (
        s.query(DepartmentGroup)
        .filter(DepartmentGroup.department_id == department_id)
        .order_by(DepartmentGroup.name.asc())
        .all()
    )


def get_group(s: Session, group_id: int) -> DepartmentGroup | None:
    return s.query(DepartmentGroup).filter(DepartmentGroup.id == group_id).one_or_none()


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


def create_sales_rep(
    s: Session,
    *,
    user: User,
    name: str,
    role: str = ROLE_SALES_REP,
    department_id: int | None = None,
    actor: User | None = None,
) -> SalesRep:
    """Profile for a newly registered user; the rep's email mirrors the login email."""
    rep = SalesRep(
        user_id=user.id,
        name=normalize_text(name) or user.email,
        email=user.email,
        role=role if role in ROLES else ROLE_SALES_REP,
        department_id=department_id,
    )
    s.add(rep)
    s.flush()
    record_event(
        s,
        actor=actor or user,
        action="sales_rep.create",
        entity_type="SalesRep",
        entity_id=str(rep.id),
        metadata={"user_id": user.id, "role": rep.role, "department_id": department_id},
    )
    return rep


def set_group(rep: SalesRep, group: DepartmentGroup | None) -> None:
    """Put the rep in `group` (replacing any membership) or remove them when group is None."""
    if group is None:
        # delete-orphan removes the membership row
        rep.group_membership = None
    elif rep.group_membership is None:
        rep.group_membership = SalesRepGroup(group=group)
    else:
        rep.group_membership.group = group


def validate_group_assignment(rep: SalesRep, group: DepartmentGroup | None) -> list[ValidationError]:
    if group is None:
        return []
    if rep.department_id is None or group.department_id != rep.department_id:
        return [ValidationError("group_id", "Group must belong to the rep's department.")]
    return []


def assign_group(s: Session, rep: SalesRep, group: DepartmentGroup | None, *, user: User) -> list[ValidationError]:
    errs = validate_group_assignment(rep, group)
    if errs:
        return errs
    before = rep.group.id if rep.group else None
    set_group(rep, group)
    rep.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="sales_rep.group_assign" if group else "sales_rep.group_remove",
        entity_type="SalesRep",
        entity_id=str(rep.id),
        metadata={"before_group_id": before, "after_group_id": group.id if group else None},
    )
    return []


def update_profile(
    s: Session,
    rep: SalesRep,
    *,
    name: str,
    department: Department | None,
    group: DepartmentGroup | None,
    user: User,
) -> list[ValidationError]:
    """
    Own-profile edit: name, department and group (None leaves the rep without a group).
    The group must belong to the chosen department.
    """
    errs: list[ValidationError] = []
    name = normalize_text(name)
    if not name:
        errs.append(ValidationError("name", "Name is required."))
    if group is not None and (department is None or group.department_id != department.id):
        errs.append(ValidationError("group_id", "Group must belong to the selected department."))
    if errs:
        return errs

    before = {"name": rep.name, "department_id": rep.department_id, "group_id": rep.group.id if rep.group else None}
    rep.name = name
    rep.department_id = department.id if department else None
    set_group(rep, group)
    rep.updated_at = datetime.utcnow()
    after = {"name": rep.name, "department_id": rep.department_id, "group_id": group.id if group else None}
    record_event(
        s,
        actor=user,
        action="sales_rep.profile_update",
        entity_type="SalesRep",
        entity_id=str(rep.id),
        metadata={"before": before, "after": after},
    )
    return []


def update_role(s: Session, rep: SalesRep, role: str, *, user: User) -> list[ValidationError]:
    if role not in ROLES:
        return [ValidationError("role", f"Role must be one of: {', '.join(ROLES)}.")]
    before = rep.role
    rep.role = role
    rep.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="sales_rep.role_change",
        entity_type="SalesRep",
        entity_id=str(rep.id),
        metadata={"before": before, "after": role},
    )
    return []


def create_group(s: Session, department: Department, name: str, *, user: User) -> DepartmentGroup:
    g = DepartmentGroup(department_id=department.id, name=normalize_text(name))
    s.add(g)
    s.flush()
    record_event(
        s,
        actor=user,
        action="department_group.create",
        entity_type="DepartmentGroup",
        entity_id=str(g.id),
        metadata={"department_id": department.id, "name": g.name},
    )
    return g


def delete_sales_rep(s: Session, rep: SalesRep, *, user: User) -> dict[str, int]:
    """
    Remove a rep with everything they own: activities, deals, customers,
    group membership and the linked login user. Returns the deleted row counts.
    """
    from app.salescrm.modules.activities.models import Activity
    from app.salescrm.modules.customers.models import Customer
    from app.salescrm.modules.deals.models import Deal

    if rep.user_id is not None and rep.user_id == user.id:
        raise ValueError("Cannot delete your own account.")

    rep_id = rep.id
    linked_user = rep.user
    customer_ids = [cid for (cid,) in s.query(Customer.id).filter(Customer.sales_rep_id == rep_id).all()]
    deal_ids = [
        did
        for (did,) in s.query(Deal.id).filter((Deal.sales_rep_id == rep_id) | Deal.customer_id.in_(customer_ids)).all()
    ]

    counts = {
        "activities": s.query(Activity)
        .filter((Activity.sales_rep_id == rep_id) | Activity.customer_id.in_(customer_ids))
        .delete(synchronize_session=False),
    }
    if deal_ids:
        # Activities of other reps that point at these deals stay, detached.
        s.query(Activity).filter(Activity.deal_id.in_(deal_ids)).update(
            {Activity.deal_id: None}, synchronize_session=False
        )
    counts["deals"] = s.query(Deal).filter(Deal.id.in_(deal_ids)).delete(synchronize_session=False)
    counts["customers"] = s.query(Customer).filter(Customer.id.in_(customer_ids)).delete(synchronize_session=False)
    counts["group_memberships"] = (
        s.query(SalesRepGroup).filter(SalesRepGroup.sales_rep_id == rep_id).delete(synchronize_session=False)
    )

    record_event(
        s,
        actor=user,
        action="sales_rep.delete",
        entity_type="SalesRep",
        entity_id=str(rep_id),
        metadata={"name": rep.name, "email": rep.email, "user_id": rep.user_id, **counts},
    )

    # Bulk deletes below bypass the ORM; drop the stale instances from the session first.
    s.expunge(rep)
    if linked_user is not None:
        s.expunge(linked_user)
    s.query(SalesRep).filter(SalesRep.id == rep_id).delete(synchronize_session=False)
    if linked_user is not None:
        s.query(User).filter(User.id == linked_user.id).delete(synchronize_session=False)
    logger.info("Deleted sales rep %s: %s", rep_id, counts)
    return counts
