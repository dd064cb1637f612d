"""
Customers module.

- Customers CRUD (list + create + detail/update + delete)
- Owned by one sales rep (customers.sales_rep_id); reps see their own, managers/admins may view all
"""
