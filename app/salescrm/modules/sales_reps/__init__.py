"""
Sales reps module.

- Sales rep profiles (1:1 with users), departments and department groups
- Rep list/detail/compare, department cards/compare, group management, own profile
"""
