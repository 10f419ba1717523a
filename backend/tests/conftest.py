"""
Pytest fixtures for RepairDesk backend tests.

Provides the test app and database, two tenant companies with branches,
payment methods, role-bearing users, and a helper for writing the source
collections (payments, refunds, expenses) settlements are computed from.
"""

from datetime import datetime
from itertools import count

import pytest

from repairdesk import create_app
from repairdesk.extensions import db
from repairdesk.models import (
    Branch,
    Company,
    Expense,
    ExpensePayment,
    PaymentEntry,
    PaymentMethod,
    ServiceTicket,
)
from repairdesk.services import permission_service
from repairdesk.services.auth_service import create_user, assign_role


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
        'DEFAULT_TIMEZONE': 'UTC',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Fresh data for each test; schema and permission definitions are reseeded."""
    with app.app_context():
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        permission_service.initialize_permissions()

        yield db.session

        db.session.rollback()


@pytest.fixture(scope='function')
def company_a(db_session):
    """Company A (first tenant) with default roles."""
    company = Company(name="Acme Repairs", code="ACME", is_active=True)
    db_session.add(company)
    db_session.commit()
    permission_service.ensure_company_roles(company.id)
    return company


@pytest.fixture(scope='function')
def company_b(db_session):
    """Company B (second tenant) with default roles."""
    company = Company(name="Beta Fixers", code="BETA", is_active=True)
    db_session.add(company)
    db_session.commit()
    permission_service.ensure_company_roles(company.id)
    return company


@pytest.fixture(scope='function')
def branch_a1(db_session, company_a):
    branch = Branch(company_id=company_a.id, name="MG Road", code="MG")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def branch_a2(db_session, company_a):
    branch = Branch(company_id=company_a.id, name="Koramangala", code="KR")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def branch_b1(db_session, company_b):
    branch = Branch(company_id=company_b.id, name="Beta Central", code="BC")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def cash_method(db_session, company_a):
    method = PaymentMethod(company_id=company_a.id, name="Cash", is_cash=True)
    db_session.add(method)
    db_session.commit()
    return method


@pytest.fixture(scope='function')
def upi_method(db_session, company_a):
    method = PaymentMethod(company_id=company_a.id, name="UPI", is_cash=False)
    db_session.add(method)
    db_session.commit()
    return method


@pytest.fixture(scope='function')
def make_user(db_session):
    """Factory: make_user(company, branch, role, username) -> User."""
    def _make(company, branch, role, username):
        user = create_user(
            username=username,
            email=f"{username}@example.com",
            password=PASSWORD,
            company_id=company.id,
            branch_id=branch.id if branch is not None else None,
        )
        assign_role(user.id, role)
        return user
    return _make


@pytest.fixture(scope='function')
def manager_a(make_user, company_a):
    """Company-level manager (no home branch)."""
    return make_user(company_a, None, "manager", "manager_a")


@pytest.fixture(scope='function')
def receptionist_a1(make_user, company_a, branch_a1):
    return make_user(company_a, branch_a1, "receptionist", "reception_mg")


@pytest.fixture(scope='function')
def admin_b(make_user, company_b, branch_b1):
    return make_user(company_b, branch_b1, "admin", "admin_b")


class SourceLedger:
    """Writes payments, refunds and expenses for one company."""

    def __init__(self, session, company):
        self.session = session
        self.company = company
        self._ticket_numbers = count(1)

    def _ticket(self, branch, **fields):
        ticket = ServiceTicket(
            company_id=self.company.id,
            branch_id=branch.id,
            ticket_number=f"T-{next(self._ticket_numbers):05d}",
            **fields,
        )
        self.session.add(ticket)
        self.session.flush()
        return ticket

    def payment(self, branch, method, amount_cents: int, when: datetime) -> PaymentEntry:
        ticket = self._ticket(branch)
        entry = PaymentEntry(
            company_id=self.company.id,
            service_id=ticket.id,
            payment_method_id=method.id,
            amount_cents=amount_cents,
            payment_date=when,
        )
        self.session.add(entry)
        self.session.commit()
        return entry

    def refund(self, branch, method, amount_cents: int, when: datetime) -> ServiceTicket:
        ticket = self._ticket(
            branch,
            refund_amount_cents=amount_cents,
            refunded_at=when,
            refund_payment_method_id=method.id if method is not None else None,
        )
        self.session.commit()
        return ticket

    def expense(self, branch, lines, when: datetime, description: str = "Courier") -> Expense:
        """lines: [(method, amount_cents), ...]"""
        expense = Expense(
            company_id=self.company.id,
            branch_id=branch.id,
            expense_date=when,
            description=description,
            amount_cents=sum(amount for _method, amount in lines),
        )
        expense.payments = [
            ExpensePayment(payment_method_id=method.id, amount_cents=amount)
            for method, amount in lines
        ]
        self.session.add(expense)
        self.session.commit()
        return expense


@pytest.fixture(scope='function')
def ledger(db_session, company_a):
    return SourceLedger(db_session, company_a)


def get_auth_token(client, username: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def manager_headers(client, manager_a):
    return auth_headers(get_auth_token(client, manager_a.username))


@pytest.fixture(scope='function')
def receptionist_headers(client, receptionist_a1):
    return auth_headers(get_auth_token(client, receptionist_a1.username))


@pytest.fixture(scope='function')
def admin_b_headers(client, admin_b):
    return auth_headers(get_auth_token(client, admin_b.username))
