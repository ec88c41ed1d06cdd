from __future__ import annotations

PERM_CUSTOMER_READ = "customer.read"
PERM_CUSTOMER_CREATE = "customer.create"
PERM_CUSTOMER_UPDATE = "customer.update"
PERM_CUSTOMER_DELETE = "customer.delete"
PERM_INTERACTION_READ = "interaction.read"
PERM_INTERACTION_CREATE = "interaction.create"
PERM_INTERACTION_UPDATE = "interaction.update"
PERM_INTERACTION_DELETE = "interaction.delete"
PERM_USER_READ = "user.read"
PERM_USER_CREATE = "user.create"
PERM_USER_UPDATE = "user.update"
PERM_USER_DELETE = "user.delete"
PERM_GROUP_READ = "group.read"
PERM_GROUP_CREATE = "group.create"
PERM_GROUP_UPDATE = "group.update"
PERM_GROUP_DELETE = "group.delete"
PERM_ROLE_READ = "role.read"
PERM_ROLE_CREATE = "role.create"
PERM_ROLE_UPDATE = "role.update"
PERM_ROLE_DELETE = "role.delete"
PERM_PERMISSION_READ = "permission.read"
PERM_TENANT_READ = "tenant.read"
PERM_TENANT_UPDATE = "tenant.update"

# code -> description; the whole vocabulary is fixed at deploy time.
PERMISSION_CATALOG: dict[str, str] = {
    PERM_CUSTOMER_READ: "Read customers",
    PERM_CUSTOMER_CREATE: "Create customers",
    PERM_CUSTOMER_UPDATE: "Update customers",
    PERM_CUSTOMER_DELETE: "Delete customers",
    PERM_INTERACTION_READ: "Read interactions",
    PERM_INTERACTION_CREATE: "Create interactions",
    PERM_INTERACTION_UPDATE: "Update interactions",
    PERM_INTERACTION_DELETE: "Delete interactions",
    PERM_USER_READ: "Read users",
    PERM_USER_CREATE: "Create users",
    PERM_USER_UPDATE: "Update users",
    PERM_USER_DELETE: "Delete users",
    PERM_GROUP_READ: "Read groups",
    PERM_GROUP_CREATE: "Create groups",
    PERM_GROUP_UPDATE: "Update groups",
    PERM_GROUP_DELETE: "Delete groups",
    PERM_ROLE_READ: "Read roles",
    PERM_ROLE_CREATE: "Create roles",
    PERM_ROLE_UPDATE: "Update roles",
    PERM_ROLE_DELETE: "Delete roles",
    PERM_PERMISSION_READ: "Read permissions",
    PERM_TENANT_READ: "Read tenant",
    PERM_TENANT_UPDATE: "Update tenant",
}


def dedupe(values: list[str]) -> list[str]:
    """Drop repeats, keeping first-seen order."""
    return list(dict.fromkeys(values))
