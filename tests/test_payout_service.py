"""
Test the Solana payout executor against a mocked RPC client.
"""

from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import base58
import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature

from kissmint.core.exceptions import PayoutError
from kissmint.models.distribution import PayoutStatus
from kissmint.services.payout_service import (
    SolanaPayoutExecutor, from_smallest_unit, to_smallest_unit
)
from kissmint.services.types import PayoutRequest


def mock_client(balance=10_000_000_000, err=None):
    client = MagicMock()
    client.get_token_account_balance = AsyncMock(
        return_value=SimpleNamespace(value=SimpleNamespace(amount=str(balance)))
    )
    client.get_latest_blockhash = AsyncMock(
        return_value=SimpleNamespace(value=SimpleNamespace(blockhash=Hash.default()))
    )
    client.send_transaction = AsyncMock(return_value=SimpleNamespace(value=Signature.default()))
    client.confirm_transaction = AsyncMock(
        return_value=SimpleNamespace(value=[SimpleNamespace(err=err)])
    )
    client.close = AsyncMock()
    return client


def make_executor(client=None, **overrides):
    options = dict(
        rpc_url="http://localhost:8899",
        payer_private_key=base58.b58encode(bytes(Keypair())).decode(),
        token_mint=str(Pubkey.new_unique()),
        decimals=9,
        confirm=True,
        transfer_delay=0,
        client=client or mock_client(),
    )
    options.update(overrides)
    return SolanaPayoutExecutor(**options)


def wallet():
    return str(Pubkey.new_unique())


@pytest.mark.parametrize("display,decimals,units", [
    ("1200", 9, 1_200_000_000_000),
    ("0.5", 6, 500_000),
    ("1.23456789", 6, 1_234_567),
    (Decimal("720"), 0, 720),
])
def test_to_smallest_unit_truncates(display, decimals, units):
    assert to_smallest_unit(display, decimals) == units


def test_from_smallest_unit_is_exact():
    assert from_smallest_unit(1_234_567, 6) == Decimal("1.234567")
    assert from_smallest_unit(720_000_000_000, 9) == Decimal("720")


def test_bad_private_key_leaves_executor_unconfigured():
    executor = make_executor(payer_private_key="not-a-key")
    assert not executor.is_configured()


def test_missing_mint_leaves_executor_unconfigured():
    executor = make_executor(token_mint="")
    assert not executor.is_configured()


@pytest.mark.asyncio
async def test_empty_batch():
    client = mock_client()
    assert await make_executor(client).distribute_payouts([]) == []
    client.get_token_account_balance.assert_not_awaited()


@pytest.mark.asyncio
async def test_unconfigured_wallet_fails_every_payout():
    client = mock_client()
    executor = make_executor(client, payer_private_key="")
    results = await executor.distribute_payouts([PayoutRequest(wallet(), 100), PayoutRequest(wallet(), 50)])

    assert [r.status for r in results] == [PayoutStatus.FAILED, PayoutStatus.FAILED]
    assert all("not configured" in r.error for r in results)
    client.send_transaction.assert_not_awaited()


@pytest.mark.asyncio
async def test_insufficient_balance_fails_every_payout():
    client = mock_client(balance=120)
    results = await make_executor(client).distribute_payouts(
        [PayoutRequest(wallet(), 100), PayoutRequest(wallet(), 50)]
    )

    assert [r.status for r in results] == [PayoutStatus.FAILED, PayoutStatus.FAILED]
    assert "Insufficient" in results[0].error
    client.send_transaction.assert_not_awaited()


@pytest.mark.asyncio
async def test_unreadable_balance_fails_every_payout():
    client = mock_client()
    client.get_token_account_balance.side_effect = RuntimeError("rpc down")
    results = await make_executor(client).distribute_payouts([PayoutRequest(wallet(), 100)])

    assert results[0].status == PayoutStatus.FAILED
    assert "rpc down" in results[0].error


@pytest.mark.asyncio
async def test_successful_batch_preserves_order():
    client = mock_client()
    requests = [PayoutRequest(wallet(), 300), PayoutRequest(wallet(), 200), PayoutRequest(wallet(), 100)]

    results = await make_executor(client).distribute_payouts(requests)

    assert [(r.wallet_address, r.amount) for r in results] == [(p.wallet_address, p.amount) for p in requests]
    assert all(r.succeeded for r in results)
    assert results[0].transaction_reference == str(Signature.default())
    assert client.send_transaction.await_count == 3
    assert client.confirm_transaction.await_count == 3


@pytest.mark.asyncio
async def test_invalid_amount_fails_only_that_payout():
    client = mock_client()
    results = await make_executor(client).distribute_payouts(
        [PayoutRequest(wallet(), 0), PayoutRequest(wallet(), 100), PayoutRequest(wallet(), True)]
    )

    assert [r.status for r in results] == [PayoutStatus.FAILED, PayoutStatus.SUCCESS, PayoutStatus.FAILED]
    assert "Invalid payout amount" in results[0].error
    assert client.send_transaction.await_count == 1


@pytest.mark.asyncio
async def test_invalid_recipient_fails_only_that_payout():
    client = mock_client()
    results = await make_executor(client).distribute_payouts(
        [PayoutRequest("not a wallet", 100), PayoutRequest(wallet(), 100)]
    )

    assert results[0].status == PayoutStatus.FAILED
    assert "Invalid recipient" in results[0].error
    assert results[1].status == PayoutStatus.SUCCESS


@pytest.mark.asyncio
async def test_send_failure_fails_only_that_payout():
    client = mock_client()
    client.send_transaction.side_effect = [
        SimpleNamespace(value=Signature.default()),
        RuntimeError("blockhash not found"),
        SimpleNamespace(value=Signature.default()),
    ]
    results = await make_executor(client).distribute_payouts(
        [PayoutRequest(wallet(), 10), PayoutRequest(wallet(), 20), PayoutRequest(wallet(), 30)]
    )

    assert [r.status for r in results] == [PayoutStatus.SUCCESS, PayoutStatus.FAILED, PayoutStatus.SUCCESS]
    assert results[1].error == "blockhash not found"


@pytest.mark.asyncio
async def test_transaction_error_on_confirmation_fails_payout():
    client = mock_client(err="InstructionError")
    results = await make_executor(client).distribute_payouts([PayoutRequest(wallet(), 10)])

    assert results[0].status == PayoutStatus.FAILED
    assert "Transaction failed" in results[0].error


@pytest.mark.asyncio
async def test_unconfirmed_transfer_skips_confirmation():
    client = mock_client()
    results = await make_executor(client, confirm=False).distribute_payouts([PayoutRequest(wallet(), 10)])

    assert results[0].succeeded
    client.confirm_transaction.assert_not_awaited()


@pytest.mark.asyncio
async def test_transfer_rejects_bad_address():
    with pytest.raises(PayoutError):
        await make_executor()._transfer("0OIl", 10)


@pytest.mark.asyncio
async def test_balance_requires_configuration():
    with pytest.raises(PayoutError):
        await make_executor(token_mint="").get_payer_token_balance()


@pytest.mark.asyncio
async def test_close_leaves_injected_client_open():
    client = mock_client()
    executor = make_executor(client)
    await executor.close()
    client.close.assert_not_awaited()
