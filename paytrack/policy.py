"""Role → operation table. Anything not listed here is denied."""

PERMISSIONS = {
    "payment:read": frozenset({"admin", "viewer"}),
    "payment:write": frozenset({"admin", "viewer"}),
    "payment:delete": frozenset({"admin"}),
    "user:read": frozenset({"admin", "viewer"}),
    "user:write": frozenset({"admin"}),
    "user:update_self": frozenset({"admin", "viewer"}),
}


def allowed(role: str, operation: str) -> bool:
    return role in PERMISSIONS.get(operation, frozenset())


def is_owner_scoped(role: str) -> bool:
    """Non-admin callers only ever see and touch their own payments."""
    return role != "admin"
