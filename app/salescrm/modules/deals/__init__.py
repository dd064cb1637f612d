"""
Deals module.

- Deals CRUD with search, status/category/rep/department filters and pagination
- "My deals" view of the signed-in rep's pipeline
"""
