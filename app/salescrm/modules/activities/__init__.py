"""
Activities module.

- Activity log CRUD (visits, calls, emails, web meetings) against a customer and optionally a deal
- Search by description/customer, filter by type
"""
