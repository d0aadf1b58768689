import asyncio
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from bank_book.errors import (
    AuthorizationError,
    ConcurrentModificationError,
    DestinationAccountNotFoundError,
    DuplicateTransactionIdError,
    InsufficientFundsError,
    InvalidAmountError,
    InvalidTransactionIdError,
    PersistenceError,
    SameAccountError,
    SourceAccountNotFoundError,
)
from bank_book.services.ledger import UserInitiated
from bank_book.services.transfer import TransferEngine, TransferRequest


@pytest.fixture
def engine(ledger):
    return TransferEngine(ledger.unit_of_work, max_retries=3)


def _assert_untouched(ledger, x, y, x_balance, y_balance):
    assert ledger.balance(x) == Decimal(x_balance)
    assert ledger.balance(y) == Decimal(y_balance)
    assert ledger.transactions == {}


async def test_transfer_moves_funds_and_links_both_sides(ledger, engine):
    x = ledger.open_account("Operating", "1000.00")
    y = ledger.open_account("Payroll", "500.00")

    result = await engine.transfer_funds(TransferRequest(x, y, Decimal("300")))

    assert ledger.balance(x) == Decimal("700.00")
    assert ledger.balance(y) == Decimal("800.00")
    assert result.from_account.new_balance == Decimal("700.00")
    assert result.to_account.new_balance == Decimal("800.00")
    assert result.amount == Decimal("300.00")

    [withdrawal] = ledger.transactions_for(x)
    [deposit] = ledger.transactions_for(y)
    assert withdrawal["type"] == "withdrawal"
    assert withdrawal["amount"] == Decimal("300.00")
    assert withdrawal["related_account_id"] == y
    assert withdrawal["is_transfer"] is True
    assert withdrawal["category"] == "Transfer"
    assert deposit["type"] == "deposit"
    assert deposit["amount"] == Decimal("300.00")
    assert deposit["related_account_id"] == x
    assert deposit["is_transfer"] is True
    assert result.withdrawal_transaction == withdrawal["id"]
    assert result.deposit_transaction == deposit["id"]


async def test_total_balance_is_conserved(ledger, engine):
    x = ledger.open_account("Operating", "1234.56")
    y = ledger.open_account("Payroll", "-20.10")
    before = ledger.balance(x) + ledger.balance(y)

    await engine.transfer_funds(TransferRequest(x, y, "99.99"))

    assert ledger.balance(x) == Decimal("1134.57")
    assert ledger.balance(y) == Decimal("79.89")
    assert ledger.balance(x) + ledger.balance(y) == before


async def test_default_descriptions_name_the_other_account(ledger, engine):
    x = ledger.open_account("Operating", "100.00")
    y = ledger.open_account("Petty Cash", "0.00")

    await engine.transfer_funds(TransferRequest(x, y, "10"))

    assert ledger.transactions_for(x)[0]["description"] == "Transfer to Petty Cash"
    assert ledger.transactions_for(y)[0]["description"] == "Transfer from Operating"


async def test_caller_description_and_ids_are_used(ledger, engine):
    x = ledger.open_account("Operating", "100.00")
    y = ledger.open_account("Petty Cash", "0.00")

    result = await engine.transfer_funds(
        TransferRequest(
            x,
            y,
            "25",
            description="Float top-up",
            date=datetime(2024, 3, 1, tzinfo=timezone.utc),
            withdrawal_transaction_id="WD-0001",
            deposit_transaction_id="DP-0001",
        )
    )

    assert result.withdrawal_transaction_id == "WD-0001"
    assert result.deposit_transaction_id == "DP-0001"
    assert set(ledger.transactions) == {"WD-0001", "DP-0001"}
    assert ledger.transactions["DP-0001"]["description"] == "Float top-up"


async def test_amount_equal_to_balance_empties_source(ledger, engine):
    x = ledger.open_account("Operating", "250.00")
    y = ledger.open_account("Payroll", "0.00")

    await engine.transfer_funds(TransferRequest(x, y, "250.00"))

    assert ledger.balance(x) == Decimal("0.00")
    assert ledger.balance(y) == Decimal("250.00")


@pytest.mark.parametrize("amount", ["0", "-1", "-0.01", "0.001"])
async def test_non_positive_amount_is_rejected(ledger, engine, amount):
    x = ledger.open_account("Operating", "1000.00")
    y = ledger.open_account("Payroll", "500.00")

    with pytest.raises(InvalidAmountError):
        await engine.transfer_funds(TransferRequest(x, y, amount))

    _assert_untouched(ledger, x, y, "1000.00", "500.00")


@pytest.mark.parametrize("amount", [Decimal("1e30"), "1e30", "10000000000000.00", Decimal("1E+999999")])
async def test_amount_beyond_storable_range_is_rejected(ledger, engine, amount):
    x = ledger.open_account("Operating", "1000.00")
    y = ledger.open_account("Payroll", "500.00")

    with pytest.raises(InvalidAmountError):
        await engine.transfer_funds(TransferRequest(x, y, amount))

    _assert_untouched(ledger, x, y, "1000.00", "500.00")


async def test_deposit_that_would_overflow_destination_is_rejected(ledger, engine):
    x = ledger.open_account("Operating", "9999999999999.00")
    y = ledger.open_account("Payroll", "9999999999999.00")

    with pytest.raises(InvalidAmountError):
        await engine.transfer_funds(TransferRequest(x, y, "1.00"))

    _assert_untouched(ledger, x, y, "9999999999999.00", "9999999999999.00")


async def test_insufficient_funds_leaves_no_trace(ledger, engine):
    x = ledger.open_account("Operating", "100.00")
    y = ledger.open_account("Payroll", "500.00")

    with pytest.raises(InsufficientFundsError):
        await engine.transfer_funds(TransferRequest(x, y, "300"))

    _assert_untouched(ledger, x, y, "100.00", "500.00")


async def test_same_account_is_rejected(ledger, engine):
    x = ledger.open_account("Operating", "100.00")

    with pytest.raises(SameAccountError):
        await engine.transfer_funds(TransferRequest(x, x, "10"))

    assert ledger.balance(x) == Decimal("100.00")
    assert ledger.commits == 0


async def test_missing_accounts_report_which_side(ledger, engine):
    x = ledger.open_account("Operating", "100.00")

    with pytest.raises(SourceAccountNotFoundError):
        await engine.transfer_funds(TransferRequest("missing", x, "10"))
    with pytest.raises(DestinationAccountNotFoundError):
        await engine.transfer_funds(TransferRequest(x, "missing", "10"))

    assert ledger.commits == 0


async def test_amount_is_checked_before_account_lookup(ledger, engine):
    with pytest.raises(InvalidAmountError):
        await engine.transfer_funds(TransferRequest("nope", "also-nope", "0"))


async def test_user_must_own_both_accounts(ledger, engine):
    mine = ledger.open_account("Mine", "100.00", user_id="alice")
    theirs = ledger.open_account("Theirs", "100.00", user_id="bob")
    shared = ledger.open_account("Station", "100.00")
    alice = UserInitiated("alice")

    with pytest.raises(AuthorizationError) as source_err:
        await engine.transfer_funds(TransferRequest(theirs, mine, "10", initiator=alice))
    assert "source" in source_err.value.message

    with pytest.raises(AuthorizationError) as dest_err:
        await engine.transfer_funds(TransferRequest(mine, theirs, "10", initiator=alice))
    assert "destination" in dest_err.value.message

    # unowned accounts are open to any caller
    await engine.transfer_funds(TransferRequest(mine, shared, "10", initiator=alice))
    assert ledger.balance(shared) == Decimal("110.00")


async def test_system_transfer_skips_ownership(ledger, engine):
    x = ledger.open_account("Alice", "100.00", user_id="alice")
    y = ledger.open_account("Bob", "100.00", user_id="bob")

    await engine.transfer_funds(TransferRequest(x, y, "40"))

    assert ledger.balance(y) == Decimal("140.00")


async def test_ownership_is_checked_before_funds(ledger, engine):
    x = ledger.open_account("Bob", "1.00", user_id="bob")
    y = ledger.open_account("Alice", "0.00", user_id="alice")

    with pytest.raises(AuthorizationError):
        await engine.transfer_funds(TransferRequest(x, y, "500", initiator=UserInitiated("alice")))


async def test_reused_transaction_id_is_rejected(ledger, engine):
    x = ledger.open_account("Operating", "1000.00")
    y = ledger.open_account("Payroll", "0.00")
    await engine.transfer_funds(
        TransferRequest(x, y, "10", withdrawal_transaction_id="T-1", deposit_transaction_id="T-2")
    )

    with pytest.raises(DuplicateTransactionIdError):
        await engine.transfer_funds(
            TransferRequest(x, y, "10", withdrawal_transaction_id="T-3", deposit_transaction_id="T-1")
        )

    assert ledger.balance(x) == Decimal("990.00")
    assert len(ledger.transactions) == 2


@pytest.mark.parametrize("bad_id", ["", "   ", "has space", "x" * 65, "-leading-dash"])
async def test_malformed_caller_transaction_id_is_rejected(ledger, engine, bad_id):
    x = ledger.open_account("Operating", "1000.00")
    y = ledger.open_account("Payroll", "0.00")

    with pytest.raises(InvalidTransactionIdError):
        await engine.transfer_funds(TransferRequest(x, y, "10", withdrawal_transaction_id=bad_id))

    assert ledger.commits == 0


async def test_both_sides_cannot_share_an_id(ledger, engine):
    x = ledger.open_account("Operating", "1000.00")
    y = ledger.open_account("Payroll", "0.00")

    with pytest.raises(InvalidTransactionIdError):
        await engine.transfer_funds(
            TransferRequest(x, y, "10", withdrawal_transaction_id="SAME", deposit_transaction_id="SAME")
        )


async def test_repeating_a_request_transfers_twice(ledger, engine):
    x = ledger.open_account("Operating", "1000.00")
    y = ledger.open_account("Payroll", "0.00")
    request = TransferRequest(x, y, "100", description="Weekly float")

    first = await engine.transfer_funds(request)
    second = await engine.transfer_funds(request)

    # not idempotent: each call posts its own pair of transactions
    assert first.withdrawal_transaction_id != second.withdrawal_transaction_id
    assert first.deposit_transaction_id != second.deposit_transaction_id
    assert ledger.balance(x) == Decimal("800.00")
    assert ledger.balance(y) == Decimal("200.00")
    assert len(ledger.transactions) == 4


async def test_failure_after_first_write_leaves_nothing_behind(ledger, engine):
    x = ledger.open_account("Operating", "1000.00")
    y = ledger.open_account("Payroll", "500.00")
    ledger.fail_after_writes = 1

    with pytest.raises(PersistenceError):
        await engine.transfer_funds(TransferRequest(x, y, "300"))

    _assert_untouched(ledger, x, y, "1000.00", "500.00")


async def test_failure_before_last_write_leaves_nothing_behind(ledger, engine):
    x = ledger.open_account("Operating", "1000.00")
    y = ledger.open_account("Payroll", "500.00")
    ledger.fail_after_writes = 3

    with pytest.raises(PersistenceError):
        await engine.transfer_funds(TransferRequest(x, y, "300"))

    _assert_untouched(ledger, x, y, "1000.00", "500.00")


def _interleave_first_reads(ledger, readers=2):
    reads = 0
    all_read = asyncio.Event()

    async def after_read():
        nonlocal reads
        reads += 1
        if reads >= readers:
            all_read.set()
        await all_read.wait()

    ledger.after_read = after_read


async def test_concurrent_overdraw_debits_only_once(ledger, engine):
    x = ledger.open_account("Operating", "1000.00")
    y = ledger.open_account("Payroll", "0.00")
    z = ledger.open_account("Suppliers", "0.00")
    _interleave_first_reads(ledger)

    results = await asyncio.gather(
        engine.transfer_funds(TransferRequest(x, y, "600")),
        engine.transfer_funds(TransferRequest(x, z, "600")),
        return_exceptions=True,
    )

    succeeded = [r for r in results if not isinstance(r, Exception)]
    failed = [r for r in results if isinstance(r, Exception)]
    assert len(succeeded) == 1
    assert len(failed) == 1
    assert isinstance(failed[0], (InsufficientFundsError, ConcurrentModificationError))
    assert ledger.balance(x) == Decimal("400.00")
    assert ledger.balance(y) + ledger.balance(z) == Decimal("600.00")
    assert len(ledger.transactions) == 2


async def test_conflict_without_retries_surfaces_concurrent_modification(ledger):
    engine = TransferEngine(ledger.unit_of_work, max_retries=0)
    x = ledger.open_account("Operating", "1000.00")
    y = ledger.open_account("Payroll", "0.00")
    _interleave_first_reads(ledger)

    results = await asyncio.gather(
        engine.transfer_funds(TransferRequest(x, y, "100")),
        engine.transfer_funds(TransferRequest(x, y, "100")),
        return_exceptions=True,
    )

    errors = [r for r in results if isinstance(r, Exception)]
    assert len(errors) == 1
    assert isinstance(errors[0], ConcurrentModificationError)
    assert errors[0].retry_safe is True
    assert ledger.balance(x) == Decimal("900.00")
    assert ledger.balance(y) == Decimal("100.00")


async def test_conflict_is_retried_against_fresh_balance(ledger, engine):
    x = ledger.open_account("Operating", "1000.00")
    y = ledger.open_account("Payroll", "0.00")
    _interleave_first_reads(ledger)

    results = await asyncio.gather(
        engine.transfer_funds(TransferRequest(x, y, "100")),
        engine.transfer_funds(TransferRequest(x, y, "100")),
        return_exceptions=True,
    )

    assert not any(isinstance(r, Exception) for r in results)
    assert ledger.balance(x) == Decimal("800.00")
    assert ledger.balance(y) == Decimal("200.00")


async def test_attempt_past_deadline_is_abandoned(ledger):
    engine = TransferEngine(ledger.unit_of_work, timeout=0.05)
    x = ledger.open_account("Operating", "1000.00")
    y = ledger.open_account("Payroll", "0.00")

    async def stall():
        await asyncio.sleep(1)

    ledger.after_read = stall

    with pytest.raises(PersistenceError):
        await engine.transfer_funds(TransferRequest(x, y, "100"))

    _assert_untouched(ledger, x, y, "1000.00", "0.00")


async def test_slow_commit_is_not_cut_off_by_the_deadline(ledger):
    engine = TransferEngine(ledger.unit_of_work, timeout=0.05)
    x = ledger.open_account("Operating", "1000.00")
    y = ledger.open_account("Payroll", "0.00")

    async def slow_commit():
        await asyncio.sleep(0.2)

    ledger.before_commit = slow_commit

    result = await engine.transfer_funds(TransferRequest(x, y, "100"))

    assert result.from_account.new_balance == Decimal("900.00")
    assert ledger.balance(x) == Decimal("900.00")
    assert ledger.balance(y) == Decimal("100.00")
    assert len(ledger.transactions) == 2
