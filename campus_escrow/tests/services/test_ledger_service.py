import pytest

from conftest import make_user, read

from campus_escrow.core.errors import ForbiddenError, InsufficientFundsError, InvalidStateError, NotFoundError
from campus_escrow.core.hashing import ledger_entry_id
from campus_escrow.core.types import PAYOUT, TREASURY, user_account
from campus_escrow.models.enums import TransactionStatus, TransactionType
from campus_escrow.services.ledger_service import LedgerEntry, LedgerService


def _transfer(source, destination, amount, nonce="n1", type_=TransactionType.adjustment):
    return LedgerEntry(
        id=ledger_entry_id(None, "test_transfer", None, nonce),
        project_id=None,
        source=source,
        destination=destination,
        amount=amount,
        type=type_,
    )


def test_post_moves_both_balances(store):
    a = make_user(store, "client", wallet=500)
    b = make_user(store, "student")
    ledger = LedgerService()

    result = store.run(lambda tx: ledger.post(tx, _transfer(user_account(a.id), user_account(b.id), 200)), op="t")

    assert result.replayed is False
    assert read(store, "users", a.id).wallet_balance == 300
    assert read(store, "users", b.id).wallet_balance == 200
    assert read(store, "transactions", result.transaction_id).status == TransactionStatus.settled.value


def test_identical_repost_is_a_single_state_change(store):
    a = make_user(store, "client", wallet=500)
    b = make_user(store, "student")
    ledger = LedgerService()
    entry = _transfer(user_account(a.id), user_account(b.id), 200)

    first = store.run(lambda tx: ledger.post(tx, entry), op="t")
    second = store.run(lambda tx: ledger.post(tx, entry), op="t")

    assert second.replayed is True
    assert second.transaction_id == first.transaction_id
    assert read(store, "users", a.id).wallet_balance == 300
    assert read(store, "users", b.id).wallet_balance == 200


def test_reused_id_with_different_contents_is_invalid(store):
    a = make_user(store, "client", wallet=500)
    b = make_user(store, "student")
    ledger = LedgerService()
    store.run(lambda tx: ledger.post(tx, _transfer(user_account(a.id), user_account(b.id), 200)), op="t")

    with pytest.raises(InvalidStateError):
        store.run(lambda tx: ledger.post(tx, _transfer(user_account(a.id), user_account(b.id), 201)), op="t")


def test_overdraft_is_refused_without_trace(store):
    a = make_user(store, "client", wallet=100)
    b = make_user(store, "student")
    ledger = LedgerService()
    entry = _transfer(user_account(a.id), user_account(b.id), 101)

    with pytest.raises(InsufficientFundsError):
        store.run(lambda tx: ledger.post(tx, entry), op="t")

    assert read(store, "users", a.id).wallet_balance == 100
    assert read(store, "users", b.id).wallet_balance == 0
    assert read(store, "transactions", entry.id) is None


def test_system_accounts_are_unbounded(store):
    a = make_user(store, "client")
    ledger = LedgerService()
    store.run(lambda tx: ledger.post(tx, _transfer(TREASURY, user_account(a.id), 1_000)), op="t")
    store.run(lambda tx: ledger.post(tx, _transfer(user_account(a.id), PAYOUT, 400, nonce="n2")), op="t")
    assert LedgerService().balance_of(store, user_account(a.id)) == 600
    assert LedgerService().balance_of(store, TREASURY) is None


def test_same_account_transfer_is_rejected(store):
    a = make_user(store, "client", wallet=100)
    with pytest.raises(InvalidStateError):
        store.run(lambda tx: LedgerService().post(tx, _transfer(user_account(a.id), user_account(a.id), 10)), op="t")


def test_reverse_posts_mirror_and_marks_original(store):
    a = make_user(store, "client", wallet=500)
    b = make_user(store, "student")
    ledger = LedgerService()
    original = store.run(lambda tx: ledger.post(tx, _transfer(user_account(a.id), user_account(b.id), 200)), op="t")

    mirror = store.run(lambda tx: ledger.reverse(tx, original.transaction_id, "posted twice"), op="t")

    assert mirror.transaction.type == TransactionType.refund.value
    assert mirror.transaction.reverses_id == original.transaction_id
    assert read(store, "transactions", original.transaction_id).status == TransactionStatus.reversed.value
    assert read(store, "users", a.id).wallet_balance == 500
    assert read(store, "users", b.id).wallet_balance == 0

    again = store.run(lambda tx: ledger.reverse(tx, original.transaction_id, "posted twice"), op="t")
    assert again.replayed is True
    assert again.transaction_id == mirror.transaction_id


def test_reverse_unknown_transaction(store):
    with pytest.raises(NotFoundError):
        store.run(lambda tx: LedgerService().reverse(tx, "missing", "x"), op="t")


def test_admin_reversal_requires_admin_and_writes_audit(store):
    a = make_user(store, "client", wallet=500)
    b = make_user(store, "student")
    admin = make_user(store, "admin")
    ledger = LedgerService()
    original = store.run(lambda tx: ledger.post(tx, _transfer(user_account(a.id), user_account(b.id), 200)), op="t")

    with pytest.raises(ForbiddenError):
        ledger.reverse_transaction(store, entry_id=original.transaction_id, admin_id=a.id, reason="oops")

    result = ledger.reverse_transaction(store, entry_id=original.transaction_id, admin_id=admin.id, reason="oops")
    assert result.replayed is False
    assert read(store, "users", b.id).wallet_balance == 0
