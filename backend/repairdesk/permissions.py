"""
Permission System Constants and Definitions

WHY: Centralized permission definitions ensure consistency across the application.
All permission codes and role mappings defined here.

DESIGN PRINCIPLES:
- Permissions are granular (one action per permission)
- Default role mappings follow principle of least privilege
- Admin has all permissions by default
"""

# =============================================================================
# PERMISSION CATEGORIES
# =============================================================================

class PermissionCategory:
    """Permission categories for organization."""
    SETTLEMENTS = "SETTLEMENTS"
    BRANCHES = "BRANCHES"
    USERS = "USERS"
    SYSTEM = "SYSTEM"


# =============================================================================
# PERMISSION DEFINITIONS
# =============================================================================

# Each permission is defined as: (code, name, description, category)
PERMISSION_DEFINITIONS = [
    # SETTLEMENT PERMISSIONS
    (
        "VIEW_SETTLEMENTS",
        "View Settlements",
        "Open today's settlement and view a settlement's details",
        PermissionCategory.SETTLEMENTS
    ),
    (
        "PREPARE_SETTLEMENTS",
        "Prepare Settlements",
        "Enter denominations and notes, and submit settlements for verification",
        PermissionCategory.SETTLEMENTS
    ),
    (
        "VIEW_SETTLEMENT_HISTORY",
        "View Settlement History",
        "List past settlements and their audit trail",
        PermissionCategory.SETTLEMENTS
    ),
    (
        "VERIFY_SETTLEMENTS",
        "Verify Settlements",
        "Verify or reject submitted settlements",
        PermissionCategory.SETTLEMENTS
    ),
    (
        "MANAGE_OPENING_BALANCES",
        "Manage Opening Balances",
        "Set opening balances and carry closing balances forward",
        PermissionCategory.SETTLEMENTS
    ),

    # BRANCH PERMISSIONS
    (
        "VIEW_ALL_BRANCHES",
        "View All Branches",
        "Work with settlements of any branch in the company, not only the user's own",
        PermissionCategory.BRANCHES
    ),

    # USER MANAGEMENT PERMISSIONS
    (
        "MANAGE_USERS",
        "Manage Users",
        "Create users and assign roles",
        PermissionCategory.USERS
    ),

    # SYSTEM PERMISSIONS
    (
        "SYSTEM_ADMIN",
        "System Administration",
        "Full system access",
        PermissionCategory.SYSTEM
    ),
]


# =============================================================================
# DEFAULT ROLE PERMISSIONS
# =============================================================================

ROLE_DESCRIPTIONS = {
    "admin": "Full system access",
    "manager": "Settlement verification across branches",
    "branch_admin": "Branch-level settlement preparation",
    "receptionist": "Front desk; prepares today's settlement",
}

DEFAULT_ROLE_PERMISSIONS = {
    "admin": [
        # Admin: Everything
        "VIEW_SETTLEMENTS",
        "PREPARE_SETTLEMENTS",
        "VIEW_SETTLEMENT_HISTORY",
        "VERIFY_SETTLEMENTS",
        "MANAGE_OPENING_BALANCES",
        "VIEW_ALL_BRANCHES",
        "MANAGE_USERS",
        "SYSTEM_ADMIN",
    ],

    "manager": [
        # Manager: Verification and history across branches
        "VIEW_SETTLEMENTS",
        "PREPARE_SETTLEMENTS",
        "VIEW_SETTLEMENT_HISTORY",
        "VERIFY_SETTLEMENTS",
        "MANAGE_OPENING_BALANCES",
        "VIEW_ALL_BRANCHES",
    ],

    "branch_admin": [
        "VIEW_SETTLEMENTS",
        "PREPARE_SETTLEMENTS",
    ],

    "receptionist": [
        # Receptionist: today's drawer only, no history
        "VIEW_SETTLEMENTS",
        "PREPARE_SETTLEMENTS",
    ],
}
