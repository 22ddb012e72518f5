"""Users, staff records, sessions and role/state change tracking.

Import from the submodules directly; this package does not re-export them
because the cache package depends on ``users.staff``.
"""
