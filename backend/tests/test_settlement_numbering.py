"""
Settlement display numbers: SET-{branchCode}-{YYYYMMDD}.
"""

from datetime import date

from repairdesk.services.settlement_numbering import generate_settlement_number


class FakeBranches:
    def __init__(self, codes):
        self.codes = codes

    def branch_code(self, branch_id):
        return self.codes.get(branch_id)


def test_uses_branch_code_and_business_date():
    number = generate_settlement_number(1, date(2026, 1, 10), branches=FakeBranches({1: "MG"}))
    assert number == "SET-MG-20260110"


def test_missing_branch_falls_back_to_placeholder():
    number = generate_settlement_number(99, date(2026, 1, 10), branches=FakeBranches({}), placeholder="XX")
    assert number == "SET-XX-20260110"


def test_blank_code_falls_back_to_placeholder():
    number = generate_settlement_number(1, date(2026, 3, 5), branches=FakeBranches({1: "  "}), placeholder="NA")
    assert number == "SET-NA-20260305"


def test_placeholder_read_from_app_config(app):
    app.config["SETTLEMENT_NUMBER_PLACEHOLDER"] = "ZZ"
    try:
        number = generate_settlement_number(1, date(2026, 1, 10), branches=FakeBranches({}))
    finally:
        app.config["SETTLEMENT_NUMBER_PLACEHOLDER"] = "XX"
    assert number == "SET-ZZ-20260110"


def test_database_branch_lookup(db_session, branch_a1):
    assert generate_settlement_number(branch_a1.id, date(2026, 1, 10)) == "SET-MG-20260110"
