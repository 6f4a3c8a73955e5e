"""
Tests for banking.py - bank accounts and fixed deposits

Tests:
- interest tiers and maturity interest rounding
- account opening (with and without an initial deposit, twice)
- deposit / withdraw moving money between wallet and bank, caches in step
- fixed deposit lifecycle: create, list (maturity sweep), claim exactly once
- rejected requests leave every balance untouched
"""

import datetime as dt

import pytest
from bson import ObjectId

from game_economy.errors import (
    AlreadyClaimedError,
    AlreadyExistsError,
    InsufficientFundsError,
    NotFoundError,
    ValidationError,
)
from game_economy.mongo_collections import BANK_ACCOUNTS, FIXED_DEPOSITS, PLAYER_STATES
from game_economy.services import banking


def _now():
    return dt.datetime.now(dt.timezone.utc)


def _wallet(db, run, user_id="u1"):
    return run(db[PLAYER_STATES].find_one({"userId": user_id}))["financial"]


def _balance(db, run, user_id="u1"):
    return run(db[BANK_ACCOUNTS].find_one({"userId": user_id}))["balance"]


def _insert_fd(db, run, *, amount=5000, rate=6.5, duration=180, started_days_ago=200, status="active"):
    start = _now() - dt.timedelta(days=started_days_ago)
    fd = {
        "userId": "u1",
        "accountId": "acc",
        "amount": amount,
        "interestRate": rate,
        "startDate": start,
        "duration": duration,
        "maturityDate": start + dt.timedelta(days=duration),
        "matured": False,
        "status": status,
    }
    run(db[FIXED_DEPOSITS].insert_one(fd))
    return fd


# ============================================================================
# Rates
# ============================================================================

class TestInterest:

    @pytest.mark.parametrize("days,rate", [
        (30, 5.0),
        (89, 5.0),
        (90, 6.5),
        (179, 6.5),
        (180, 7.5),
        (365, 8.5),
        (730, 9.5),
        (1000, 9.5),
    ])
    def test_rate_tiers(self, days, rate):
        assert banking.interest_rate_for(days) == rate

    def test_maturity_interest(self):
        # 5000 * 0.065 * 180/365 = 160.27
        assert banking.maturity_interest(5000, 6.5, 180) == 160

    def test_rounds_half_up(self):
        # 365 * 10% * 365/365 = 36.5
        assert banking.maturity_interest(365, 10, 365) == 37


# ============================================================================
# Accounts
# ============================================================================

class TestBankAccount:

    def test_get_creates_empty_account(self, db, run):
        account = run(banking.get_bank_account(db, "u1"))

        assert account["balance"] == 0
        assert account["transactions"] == []
        assert "accountNumber" not in account

    def test_create_with_initial_deposit(self, db, run, seed_player):
        seed_player("u1", rupees=1000)

        account = run(banking.create_bank_account(db, "u1", "Asha", 400))

        assert account["accountNumber"].startswith("DIN-")
        assert len(account["accountNumber"]) == len("DIN-") + 6
        assert account["accountHolder"] == "Asha"
        assert account["balance"] == 400
        assert account["transactions"][-1]["type"] == "deposit"
        assert _wallet(db, run)["rupees"] == 600
        assert _wallet(db, run)["bankBalance"] == 400

    def test_opens_on_demand_account_in_place(self, db, run, seed_player):
        seed_player("u1", rupees=0)
        empty = run(banking.get_bank_account(db, "u1"))

        account = run(banking.create_bank_account(db, "u1", "Asha"))

        assert account["_id"] == empty["_id"]
        assert account["accountNumber"]

    def test_cannot_open_twice(self, db, run, seed_player):
        seed_player("u1", rupees=1000)
        run(banking.create_bank_account(db, "u1", "Asha", 100))

        with pytest.raises(AlreadyExistsError):
            run(banking.create_bank_account(db, "u1", "Asha", 100))
        assert _wallet(db, run)["rupees"] == 900

    def test_initial_deposit_larger_than_wallet(self, db, run, seed_player):
        seed_player("u1", rupees=50)

        with pytest.raises(InsufficientFundsError):
            run(banking.create_bank_account(db, "u1", "Asha", 51))
        assert _wallet(db, run)["rupees"] == 50
        assert run(db[BANK_ACCOUNTS].find_one({"userId": "u1"})) is None

    def test_holder_required(self, db, run):
        with pytest.raises(ValidationError):
            run(banking.create_bank_account(db, "u1", "   "))


class TestDepositWithdraw:

    def test_deposit_moves_wallet_to_bank(self, db, run, seed_player):
        seed_player("u1", rupees=1000)

        account = run(banking.deposit(db, "u1", 300))

        assert account["balance"] == 300
        assert account["transactions"][-1]["description"] == "Deposit of ₹300"
        assert _wallet(db, run)["rupees"] == 700
        assert _wallet(db, run)["bankBalance"] == 300

    @pytest.mark.parametrize("amount", [0, -5, "10"])
    def test_invalid_deposit_changes_nothing(self, db, run, seed_player, amount):
        seed_player("u1", rupees=1000)

        with pytest.raises(ValidationError):
            run(banking.deposit(db, "u1", amount))
        assert _wallet(db, run)["rupees"] == 1000
        assert run(db[BANK_ACCOUNTS].find_one({"userId": "u1"})) is None

    def test_deposit_more_than_wallet(self, db, run, seed_player):
        seed_player("u1", rupees=10)

        with pytest.raises(InsufficientFundsError):
            run(banking.deposit(db, "u1", 11))
        assert _wallet(db, run)["rupees"] == 10

    def test_withdraw_entire_balance(self, db, run, seed_player):
        seed_player("u1", rupees=500)
        run(banking.deposit(db, "u1", 500))

        account = run(banking.withdraw(db, "u1", 500))

        assert account["balance"] == 0
        assert account["transactions"][-1]["type"] == "withdrawal"
        assert _wallet(db, run)["rupees"] == 500
        assert _wallet(db, run)["bankBalance"] == 0

    def test_withdraw_one_more_than_balance(self, db, run, seed_player):
        seed_player("u1", rupees=500)
        run(banking.deposit(db, "u1", 500))

        with pytest.raises(InsufficientFundsError):
            run(banking.withdraw(db, "u1", 501))
        assert _balance(db, run) == 500
        assert _wallet(db, run)["rupees"] == 0

    def test_withdraw_without_account(self, db, run, seed_player):
        seed_player("u1", rupees=500)

        with pytest.raises(NotFoundError):
            run(banking.withdraw(db, "u1", 1))


# ============================================================================
# Fixed deposits
# ============================================================================

class TestFixedDeposits:

    def test_create_debits_bank(self, db, run, seed_player):
        seed_player("u1", rupees=10000)
        run(banking.deposit(db, "u1", 8000))

        fd = run(banking.create_fixed_deposit(db, "u1", 5000, 180))

        assert fd["interestRate"] == 7.5
        assert fd["status"] == "active"
        assert fd["matured"] is False
        assert fd["maturityDate"] - fd["startDate"] == dt.timedelta(days=180)
        assert isinstance(fd["_id"], ObjectId)
        assert _balance(db, run) == 3000
        assert _wallet(db, run)["bankBalance"] == 3000
        assert _wallet(db, run)["rupees"] == 2000

    def test_create_without_enough_bank_balance(self, db, run, seed_player):
        seed_player("u1", rupees=10000)
        run(banking.deposit(db, "u1", 100))

        with pytest.raises(InsufficientFundsError):
            run(banking.create_fixed_deposit(db, "u1", 101, 90))
        assert _balance(db, run) == 100
        assert db[FIXED_DEPOSITS].docs == []

    def test_list_marks_overdue_as_matured(self, db, run):
        _insert_fd(db, run, started_days_ago=200)
        _insert_fd(db, run, started_days_ago=1)

        deposits = run(banking.list_fixed_deposits(db, "u1"))

        # newest first
        assert [d["status"] for d in deposits] == ["active", "matured"]
        assert deposits[1]["matured"] is True
        stored = sorted(db[FIXED_DEPOSITS].docs, key=lambda d: d["startDate"])
        assert stored[0]["status"] == "matured"

    def test_claim_matured_deposit(self, db, run, seed_player):
        seed_player("u1")
        fd = _insert_fd(db, run)

        payout = run(banking.claim_fixed_deposit(db, "u1", str(fd["_id"])))

        assert payout == {"principal": 5000, "interest": 160, "total": 5160}
        account = run(db[BANK_ACCOUNTS].find_one({"userId": "u1"}))
        assert account["balance"] == 5160
        assert account["transactions"][-1]["description"] == (
            "Fixed Deposit maturity - Principal: ₹5000, Interest: ₹160"
        )
        assert _wallet(db, run)["bankBalance"] == 5160
        assert run(db[FIXED_DEPOSITS].find_one({"_id": fd["_id"]}))["status"] == "claimed"

    def test_claim_twice(self, db, run, seed_player):
        seed_player("u1")
        fd = _insert_fd(db, run)
        run(banking.claim_fixed_deposit(db, "u1", str(fd["_id"])))

        with pytest.raises(AlreadyClaimedError):
            run(banking.claim_fixed_deposit(db, "u1", str(fd["_id"])))
        assert _balance(db, run) == 5160

    def test_claim_before_maturity(self, db, run, seed_player):
        seed_player("u1")
        fd = _insert_fd(db, run, started_days_ago=10)

        with pytest.raises(ValidationError, match="not yet matured"):
            run(banking.claim_fixed_deposit(db, "u1", str(fd["_id"])))
        assert run(db[BANK_ACCOUNTS].find_one({"userId": "u1"})) is None

    def test_claim_cancelled(self, db, run, seed_player):
        seed_player("u1")
        fd = _insert_fd(db, run, status="cancelled")

        with pytest.raises(ValidationError, match="cancelled"):
            run(banking.claim_fixed_deposit(db, "u1", str(fd["_id"])))

    def test_claim_someone_elses_deposit(self, db, run, seed_player):
        seed_player("u2")
        fd = _insert_fd(db, run)

        with pytest.raises(NotFoundError):
            run(banking.claim_fixed_deposit(db, "u2", str(fd["_id"])))

    def test_claim_malformed_id(self, db, run):
        with pytest.raises(ValidationError):
            run(banking.claim_fixed_deposit(db, "u1", "not-an-object-id"))
