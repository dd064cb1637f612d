"""
CRM feature modules: customers, deals, activities, sales reps/departments and reports.

Each module keeps models/service/admin (blueprint) apart and leans on the shared
pieces in app.salescrm (auth, rbac, audit, db session).
"""
