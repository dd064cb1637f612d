import sys
from pathlib import Path
import os

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.salescrm.constants import ROLE_ADMIN
from app.salescrm.models import User
from app.salescrm.modules.sales_reps.models import Department, DepartmentGroup
from app.salescrm.modules.sales_reps.service import create_sales_rep
from scripts._db_utils import resolve_database_url, script_session

# Department name -> default groups
DEFAULT_DEPARTMENTS: dict[str, tuple[str, ...]] = {
    "第一営業部": ("1課", "2課"),
    "第二営業部": ("1課", "2課"),
    "工事部": ("工事課",),
}


def seed_departments(s) -> int:
    """Create the default departments and groups. Existing rows are left alone."""
    created = 0
    for dept_name, group_names in DEFAULT_DEPARTMENTS.items():
        dept = s.query(Department).filter(Department.name == dept_name).one_or_none()
        if not dept:
            dept = Department(name=dept_name)
            s.add(dept)
            s.flush()
            created += 1
        existing = {g.name for g in dept.groups}
        for group_name in group_names:
            if group_name not in existing:
                s.add(DepartmentGroup(department_id=dept.id, name=group_name))
    return created


def seed_admin(s, *, admin_email: str, admin_password: str) -> User:
    """
    Admin login plus its admin sales rep profile.
    Does NOT overwrite an existing admin user's password.
    """
    user = s.query(User).filter(User.email == admin_email).one_or_none()
    if not user:
        user = User(email=admin_email, password_hash=generate_password_hash(admin_password), is_active=True)
        s.add(user)
        s.flush()
    if user.sales_rep is None:
        create_sales_rep(s, user=user, name="Administrator", role=ROLE_ADMIN)
    elif user.sales_rep.role != ROLE_ADMIN:
        user.sales_rep.role = ROLE_ADMIN
    return user


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed departments/groups/admin user in an idempotent way.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@salescrm.local").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    db_url = resolve_database_url(database_url)

    with script_session(db_url) as s:
        created = seed_departments(s)
        seed_admin(s, admin_email=admin_email, admin_password=admin_password)

    print(f"Initialized database (seed_only). Departments created: {created}")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
