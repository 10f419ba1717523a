# Overview: Flask CLI command groups for bootstrap, inspection, and settlement operations.

# backend/repairdesk/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--company "Acme Repairs"] [--company-code ACME]
#   Idempotent bootstrap: permissions, default company, branch, roles and admin user.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Company management (MULTI-TENANT):
# - python -m flask companies list
# - python -m flask companies create --name "Acme Repairs" --code ACME
# - python -m flask companies add-branch --company-id 1 --name "MG Road" --code MG --timezone Asia/Kolkata
#
# Users:
# - python -m flask users list [--company-id 1]
# - python -m flask users create --company-id 1 --branch-id 1 --username priya --email priya@acme.local --role receptionist
#
# Payment methods:
# - python -m flask payment-methods list --company-id 1
# - python -m flask payment-methods create --company-id 1 --name Cash --cash
#
# Settlements:
# - python -m flask settlements open --company-id 1 --branch-id 1 [--date 2026-01-10]
# - python -m flask settlements show 42 --company-id 1
# - python -m flask settlements list --company-id 1 [--branch-id 1] [--status SUBMITTED]

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Branch, Company, PaymentMethod, User
from .permissions import DEFAULT_ROLE_PERMISSIONS
from .services import permission_service, settlement_service, tenant_service
from .services.auth_service import create_user, assign_role, PasswordValidationError
from .validation import NotFoundError, ValidationError, parse_date_value


def _money(cents: int | None) -> str:
    cents = cents or 0
    sign = "-" if cents < 0 else ""
    return f"{sign}{abs(cents) // 100}.{abs(cents) % 100:02d}"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--company', 'company_name', default='Default Company', help='Company name')
@click.option('--company-code', default='DEFAULT', help='Company code')
@click.option('--branch', 'branch_name', default='Main Branch', help='Branch name')
@click.option('--branch-code', default='MAIN', help='Branch code used in settlement numbers')
@with_appcontext
def init_system(company_name, company_code, branch_name, branch_code):
    """
    Initialize the system: permissions, default company, branch, roles and admin.

    Creates (when missing):
    - All permission definitions
    - Default company and one branch
    - Roles: admin, manager, branch_admin, receptionist
    - Cash and UPI payment methods
    - User admin/admin@repairdesk.local with password "Password123!"

    SECURITY: Change the admin password immediately in production!
    """
    click.echo("START Initializing RepairDesk...")

    perm_count = permission_service.initialize_permissions()
    click.echo(f"PASS Created {perm_count} permissions")

    company = db.session.query(Company).filter_by(code=company_code).first()
    if not company:
        company = Company(name=company_name, code=company_code, is_active=True)
        db.session.add(company)
        db.session.commit()
        click.echo(f"PASS Created company: {company.name} (ID: {company.id}, Code: {company.code})")
    else:
        click.echo(f"PASS Using existing company: {company.name} (ID: {company.id})")

    branch = db.session.query(Branch).filter_by(company_id=company.id).first()
    if not branch:
        branch = Branch(company_id=company.id, name=branch_name, code=branch_code)
        db.session.add(branch)
        db.session.commit()
        click.echo(f"PASS Created branch: {branch.name} (ID: {branch.id}, Code: {branch.code})")
    else:
        click.echo(f"PASS Using existing branch: {branch.name} (ID: {branch.id})")

    roles = permission_service.ensure_company_roles(company.id)
    click.echo(f"PASS Roles ready: {', '.join(sorted(roles))}")

    for method_name, is_cash in (("Cash", True), ("UPI", False)):
        if not db.session.query(PaymentMethod).filter_by(company_id=company.id, name=method_name).first():
            db.session.add(PaymentMethod(company_id=company.id, name=method_name, is_cash=is_cash))
    db.session.commit()

    if db.session.query(User).filter_by(company_id=company.id, username="admin").first():
        click.echo("WARN  User 'admin' already exists, skipping...")
    else:
        try:
            user = create_user(
                username="admin",
                email="admin@repairdesk.local",
                password="Password123!",
                company_id=company.id,
                branch_id=branch.id,
                name="Administrator",
            )
            assign_role(user.id, "admin")
            click.echo("PASS Created user: admin (admin@repairdesk.local) with role 'admin'")
        except (PasswordValidationError, ValueError) as e:
            click.echo(f"FAIL Failed to create admin user: {e}")

    click.echo("\nDONE RepairDesk initialized")
    click.echo("   admin -> admin@repairdesk.local / Password123! (CHANGE IN PRODUCTION!)")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        click.echo("FAIL Refusing to reset without --yes")
        return
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


# =============================================================================
# COMPANY MANAGEMENT COMMANDS (MULTI-TENANT)
# =============================================================================

@click.group('companies')
def companies_group():
    """Company (tenant) management commands."""


@companies_group.command('list')
@with_appcontext
def list_companies():
    """List all companies."""
    companies = db.session.query(Company).order_by(Company.id).all()
    if not companies:
        click.echo("No companies found.")
        return

    click.echo("\n" + "="*72)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<12} {'Active':<8} {'Branches'}")
    click.echo("="*72)
    for company in companies:
        branch_codes = ','.join(b.code or b.name for b in tenant_service.get_company_branches(company.id))
        active_str = "Yes" if company.is_active else "No"
        click.echo(f"{company.id:<5} {company.name:<30} {company.code or '-':<12} {active_str:<8} {branch_codes or '-'}")
    click.echo("="*72 + "\n")


@companies_group.command('create')
@click.option('--name', required=True, help='Company name')
@click.option('--code', required=True, help='Short code (unique)')
@with_appcontext
def create_company_cli(name, code):
    """Create a company and its default roles."""
    if db.session.query(Company).filter_by(code=code).first():
        click.echo(f"FAIL Company with code '{code}' already exists")
        return

    company = Company(name=name, code=code, is_active=True)
    db.session.add(company)
    db.session.commit()

    permission_service.initialize_permissions()
    permission_service.ensure_company_roles(company.id)
    click.echo(f"PASS Created company: {company.name} (ID: {company.id}, Code: {company.code})")


@companies_group.command('add-branch')
@click.option('--company-id', type=int, required=True, help='Company ID')
@click.option('--name', required=True, help='Branch name')
@click.option('--code', help='Branch code (unique within company)')
@click.option('--timezone', 'timezone_name', help='IANA timezone, e.g. Asia/Kolkata')
@with_appcontext
def add_branch_cli(company_id, name, code, timezone_name):
    """Add a branch to a company."""
    company = db.session.get(Company, company_id)
    if not company:
        click.echo(f"FAIL Company ID {company_id} not found")
        return

    if db.session.query(Branch).filter_by(company_id=company_id, name=name).first():
        click.echo(f"FAIL Branch '{name}' already exists in this company")
        return

    branch = Branch(company_id=company_id, name=name, code=code, timezone=timezone_name)
    db.session.add(branch)
    db.session.commit()
    click.echo(f"PASS Created branch: {branch.name} (ID: {branch.id}) in company '{company.name}'")


# =============================================================================
# USER MANAGEMENT COMMANDS
# =============================================================================

@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--company-id', type=int, required=True, help='Company ID')
@click.option('--branch-id', type=int, help='Home branch (omit for company-level users)')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--name', help='Display name')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(sorted(DEFAULT_ROLE_PERMISSIONS)), prompt=True, help='Role')
@with_appcontext
def create_user_cli(company_id, branch_id, username, email, name, password, role):
    """
    Create a user within a company and assign one role.

    Password must be 8+ chars with uppercase, lowercase, digit and special char.
    """
    try:
        permission_service.ensure_company_roles(company_id)
        user = create_user(
            username=username,
            email=email,
            password=password,
            company_id=company_id,
            branch_id=branch_id,
            name=name,
        )
        assign_role(user.id, role)
        click.echo(f"PASS Created user: {username} ({email}) with role '{role}'")
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {e}")
    except ValueError as e:
        click.echo(f"FAIL Failed to create user: {e}")


@users_group.command('list')
@click.option('--company-id', type=int, help='Filter by company')
@with_appcontext
def list_users(company_id):
    """List users with roles and active status."""
    query = db.session.query(User).order_by(User.id)
    if company_id:
        query = query.filter(User.company_id == company_id)
    users = query.all()
    if not users:
        click.echo("No users found.")
        return

    click.echo(f"{'ID':<5} {'Username':<20} {'Company':<8} {'Branch':<8} {'Active':<8} {'Roles'}")
    for user in users:
        roles = ", ".join(permission_service.get_user_role_names(user.id)) or "-"
        active_str = "Yes" if user.is_active else "No"
        click.echo(
            f"{user.id:<5} {user.username:<20} {user.company_id:<8} "
            f"{user.branch_id or '-':<8} {active_str:<8} {roles}"
        )


# =============================================================================
# PAYMENT METHODS
# =============================================================================

@click.group('payment-methods')
def payment_methods_group():
    """Payment method (tender) commands."""


@payment_methods_group.command('create')
@click.option('--company-id', type=int, required=True, help='Company ID')
@click.option('--name', required=True, help='Method name, e.g. Cash, UPI, Card')
@click.option('--cash', 'is_cash', is_flag=True, help='Counts toward the physical drawer')
@with_appcontext
def create_payment_method_cli(company_id, name, is_cash):
    """Create a payment method for a company."""
    if not db.session.get(Company, company_id):
        click.echo(f"FAIL Company ID {company_id} not found")
        return
    if db.session.query(PaymentMethod).filter_by(company_id=company_id, name=name).first():
        click.echo(f"FAIL Payment method '{name}' already exists")
        return

    method = PaymentMethod(company_id=company_id, name=name, is_cash=is_cash)
    db.session.add(method)
    db.session.commit()
    click.echo(f"PASS Created payment method: {method.name} (ID: {method.id}, cash={method.is_cash})")


@payment_methods_group.command('list')
@click.option('--company-id', type=int, required=True, help='Company ID')
@with_appcontext
def list_payment_methods(company_id):
    """List payment methods (active and inactive)."""
    methods = (
        db.session.query(PaymentMethod)
        .filter_by(company_id=company_id)
        .order_by(PaymentMethod.id)
        .all()
    )
    for method in methods:
        flags = []
        if method.is_cash:
            flags.append("cash")
        if not method.is_active:
            flags.append("inactive")
        click.echo(f"{method.id:<5} {method.name:<20} {', '.join(flags)}")


# =============================================================================
# SETTLEMENTS
# =============================================================================

@click.group('settlements')
def settlements_group():
    """Daily cash settlement commands."""


@settlements_group.command('open')
@click.option('--company-id', type=int, required=True, help='Company ID')
@click.option('--branch-id', type=int, required=True, help='Branch ID')
@click.option('--date', 'day', help='Business date YYYY-MM-DD (default: today in branch time)')
@click.option('--user-id', type=int, help='Acting user (recorded as creator)')
@with_appcontext
def open_settlement_cli(company_id, branch_id, day, user_id):
    """Create or refresh the settlement for a branch day."""
    try:
        settlement = settlement_service.create_or_get_settlement(
            company_id,
            branch_id,
            parse_date_value("date", day),
            user_id,
        )
    except (NotFoundError, ValidationError) as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(
        f"PASS {settlement.settlement_number} [{settlement.status}] "
        f"net={_money(settlement.net_cash_amount_cents)} cash_net={_money(settlement.cash_net_amount_cents)}"
    )


@settlements_group.command('show')
@click.argument('settlement_id', type=int)
@click.option('--company-id', type=int, required=True, help='Company ID')
@with_appcontext
def show_settlement_cli(settlement_id, company_id):
    """Print one settlement with its per-method breakdown."""
    try:
        settlement = settlement_service.get_settlement(settlement_id, company_id)
    except NotFoundError as e:
        click.echo(f"FAIL {e}")
        return

    click.echo(f"{settlement.settlement_number}  {settlement.settlement_date}  [{settlement.status}]")
    click.echo(f"{'Method':<16} {'Opening':>12} {'Collected':>12} {'Refunds':>12} {'Expenses':>12} {'Closing':>12}")
    for row in settlement.methods:
        data = row.to_dict()
        click.echo(
            f"{data['payment_method_name'] or row.payment_method_id:<16} "
            f"{_money(row.opening_balance_cents):>12} {_money(row.collected_amount_cents):>12} "
            f"{_money(row.refunded_amount_cents):>12} {_money(row.expense_amount_cents):>12} "
            f"{_money(row.closing_balance_cents):>12}"
        )
    click.echo(f"Net: {_money(settlement.net_cash_amount_cents)}  Cash net: {_money(settlement.cash_net_amount_cents)}")
    if settlement.denomination is not None:
        click.echo(
            f"Counted: {_money(settlement.physical_cash_count_cents)}  "
            f"Difference: {_money(settlement.cash_difference_cents)}"
        )


@settlements_group.command('list')
@click.option('--company-id', type=int, required=True, help='Company ID')
@click.option('--branch-id', type=int, help='Branch ID')
@click.option('--status', type=click.Choice(sorted(settlement_service.SETTLEMENT_STATUSES)), help='Status filter')
@click.option('--limit', type=int, default=20, help='Max rows')
@with_appcontext
def list_settlements_cli(company_id, branch_id, status, limit):
    """List recent settlements, newest first."""
    result = settlement_service.list_settlements(company_id, branch_id=branch_id, status=status, limit=limit)
    for item in result["settlements"]:
        click.echo(
            f"{item['id']:<6} {item['settlement_number']:<24} {item['status']:<10} "
            f"net={_money(item['net_cash_amount_cents'])}"
        )
    click.echo(f"{result['pagination']['total']} settlement(s)")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(companies_group)
    app.cli.add_command(users_group)
    app.cli.add_command(payment_methods_group)
    app.cli.add_command(settlements_group)
