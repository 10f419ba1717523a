"""
Multi-Tenant Service: Tenant Validation and Scoping Helpers

WHY: Every request is scoped to a company, and branch ids arriving from
client input must be validated against it.

SECURITY INVARIANTS:
1. Every authenticated request has g.company_id set
2. Branch IDs from client input are validated against g.company_id
3. A branch of another company is reported as not found
4. Cross-tenant access attempts are logged as security events
"""

from flask import g, has_request_context, request

from ..extensions import db
from ..models import Branch
from ..validation import NotFoundError, ValidationError, coerce_int
from . import permission_service


class TenantAccessError(NotFoundError):
    """Raised when a branch is missing or belongs to another company."""
    pass


def get_current_company_id() -> int:
    """
    Current tenant's company_id from the Flask g context.

    Raises TenantAccessError if not set; @require_auth always sets it.
    """
    if getattr(g, 'company_id', None) is None:
        raise TenantAccessError("Tenant context not established")
    return g.company_id


def get_current_branch_id() -> int | None:
    """None for company-level users who aren't assigned to a branch."""
    return getattr(g, 'branch_id', None)


def require_branch_in_company(branch_id: int, company_id: int) -> Branch:
    """
    Validate that a branch belongs to the company.

    Call this before any operation that uses a branch_id from client input.

    Raises:
        TenantAccessError (a NotFoundError) if the branch doesn't exist or
        belongs to a different company
    """
    branch = db.session.get(Branch, branch_id)

    if not branch:
        raise TenantAccessError(f"Branch {branch_id} not found")

    if branch.company_id != company_id:
        _log_cross_tenant_attempt(
            f"Branch {branch_id} belongs to company {branch.company_id}, not {company_id}",
            company_id=company_id,
            attempted_branch_id=branch_id,
        )
        # Don't reveal it exists in another company
        raise TenantAccessError(f"Branch {branch_id} not found")

    return branch


def get_company_branches(company_id: int) -> list[Branch]:
    return db.session.query(Branch).filter_by(company_id=company_id).order_by(Branch.name).all()


def _log_cross_tenant_attempt(
    reason: str,
    company_id: int | None = None,
    attempted_branch_id: int | None = None
) -> None:
    if not has_request_context():
        return

    user = getattr(g, 'current_user', None)

    permission_service.log_security_event(
        user_id=user.id if user is not None else None,
        event_type="CROSS_TENANT_ACCESS_DENIED",
        success=False,
        resource=request.path,
        action=request.method,
        reason=reason,
        ip_address=request.remote_addr,
        user_agent=request.headers.get("User-Agent"),
        company_id=company_id,
        branch_id=attempted_branch_id,
    )


def can_view_all_branches() -> bool:
    return permission_service.user_has_permission(g.current_user.id, "VIEW_ALL_BRANCHES")


def resolve_branch_id(raw) -> int:
    """Branch id from client input, defaulting to the user's own branch."""
    if raw is None or raw == "":
        branch_id = get_current_branch_id()
        if branch_id is None:
            raise ValidationError("branch_id is required")
        return branch_id
    return coerce_int("branch_id", raw)


def check_branch_scope(branch_id: int | None) -> bool:
    """
    Users without VIEW_ALL_BRANCHES may only touch their own branch.

    Denials are logged as BRANCH_SCOPE_DENIED security events.
    """
    if can_view_all_branches():
        return True
    own_branch_id = get_current_branch_id()
    if own_branch_id is not None and own_branch_id == branch_id:
        return True
    permission_service.log_security_event(
        user_id=g.current_user.id,
        event_type="BRANCH_SCOPE_DENIED",
        success=False,
        resource=request.path,
        action=request.method,
        reason=f"User branch {own_branch_id} cannot access branch {branch_id}",
        ip_address=request.remote_addr,
        user_agent=request.headers.get("User-Agent"),
        company_id=get_current_company_id(),
        branch_id=own_branch_id,
    )
    return False
