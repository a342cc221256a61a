"""
Token payouts on Solana.

Prizes are SPL token transfers from the payout wallet's associated token
account to each winner's associated token account. Amounts are always
integers in the token's smallest unit.
"""

import asyncio
from decimal import Decimal, ROUND_FLOOR
from typing import List, Optional

import base58
import structlog
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import Transaction
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import (
    TransferCheckedParams, get_associated_token_address, transfer_checked
)

from kissmint.core.config import settings
from kissmint.core.exceptions import PayoutError
from kissmint.models.distribution import PayoutStatus
from .types import PayoutRequest, PayoutResult

logger = structlog.get_logger(__name__)


def to_smallest_unit(display_amount, decimals: int) -> int:
    """Display amount to integer smallest units, truncating any excess precision."""
    scaled = Decimal(str(display_amount)).scaleb(decimals)
    return int(scaled.to_integral_value(rounding=ROUND_FLOOR))


def from_smallest_unit(units: int, decimals: int) -> Decimal:
    """Integer smallest units back to an exact display amount."""
    return Decimal(int(units)).scaleb(-decimals)


class SolanaPayoutExecutor:
    """Sends prize transfers one at a time from the payout wallet."""

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        payer_private_key: Optional[str] = None,
        token_mint: Optional[str] = None,
        decimals: Optional[int] = None,
        confirm: Optional[bool] = None,
        transfer_delay: Optional[float] = None,
        client: Optional[AsyncClient] = None
    ):
        self.rpc_url = rpc_url or settings.solana_rpc_url
        self.decimals = decimals if decimals is not None else settings.payout_token_decimals
        self.confirm = confirm if confirm is not None else settings.payout_confirm_transactions
        self.transfer_delay = (
            transfer_delay if transfer_delay is not None
            else settings.payout_transfer_delay_seconds
        )
        self.commitment = Commitment(settings.solana_commitment)

        self._client = client
        self._owns_client = client is None

        self.payer: Optional[Keypair] = None
        self.mint: Optional[Pubkey] = None

        private_key = payer_private_key if payer_private_key is not None else settings.payout_private_key
        if private_key:
            try:
                self.payer = Keypair.from_bytes(base58.b58decode(private_key))
                logger.info("Payout keypair initialized", payer=str(self.payer.pubkey()))
            except ValueError as e:
                logger.error("Failed to initialize payout keypair", error=str(e))

        mint = token_mint if token_mint is not None else settings.payout_token_mint
        if mint:
            try:
                self.mint = Pubkey.from_string(mint)
            except ValueError as e:
                logger.error("Invalid payout token mint", mint=mint, error=str(e))

    @property
    def client(self) -> AsyncClient:
        if self._client is None:
            self._client = AsyncClient(self.rpc_url, commitment=self.commitment)
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.close()
        self._client = None

    def is_configured(self) -> bool:
        return self.payer is not None and self.mint is not None

    def _payer_token_account(self) -> Pubkey:
        return get_associated_token_address(self.payer.pubkey(), self.mint)

    async def get_payer_token_balance(self) -> int:
        """Payout wallet token balance in smallest units."""
        if not self.is_configured():
            raise PayoutError("Payout wallet is not configured")
        response = await self.client.get_token_account_balance(
            self._payer_token_account(),
            commitment=self.commitment
        )
        return int(response.value.amount)

    async def _transfer(self, wallet_address: str, amount: int) -> str:
        """Send one transfer_checked and return its signature."""
        try:
            recipient = Pubkey.from_string(wallet_address)
        except ValueError:
            raise PayoutError(
                f"Invalid recipient wallet address: {wallet_address}",
                {"wallet_address": wallet_address}
            )

        instruction = transfer_checked(
            TransferCheckedParams(
                program_id=TOKEN_PROGRAM_ID,
                source=self._payer_token_account(),
                mint=self.mint,
                dest=get_associated_token_address(recipient, self.mint),
                owner=self.payer.pubkey(),
                amount=amount,
                decimals=self.decimals,
            )
        )

        recent_blockhash = await self.client.get_latest_blockhash()
        transaction = Transaction.new_signed_with_payer(
            [instruction],
            self.payer.pubkey(),
            [self.payer],
            recent_blockhash.value.blockhash
        )

        response = await self.client.send_transaction(transaction)
        signature = response.value

        if self.confirm:
            confirmation = await self.client.confirm_transaction(
                signature,
                commitment=self.commitment
            )
            status = confirmation.value[0]
            if status is None or status.err:
                raise PayoutError(
                    f"Transaction failed: {status.err if status else 'not confirmed'}",
                    {"signature": str(signature)}
                )

        return str(signature)

    def _fail_all(self, payouts: List[PayoutRequest], error: str) -> List[PayoutResult]:
        logger.error("Payout batch failed before sending", payouts=len(payouts), error=error)
        return [
            PayoutResult(
                wallet_address=p.wallet_address,
                amount=p.amount,
                status=PayoutStatus.FAILED,
                error=error,
            )
            for p in payouts
        ]

    async def distribute_payouts(self, payouts: List[PayoutRequest]) -> List[PayoutResult]:
        """
        Execute payouts strictly in order, one result per request.

        A failure that concerns the whole batch (wallet not configured, balance
        unreadable or too low) fails every item instead of raising.
        """
        if not payouts:
            return []

        if not self.is_configured():
            return self._fail_all(payouts, "Payout wallet is not configured")

        total = sum(
            p.amount for p in payouts
            if isinstance(p.amount, int) and not isinstance(p.amount, bool) and p.amount > 0
        )
        try:
            balance = await self.get_payer_token_balance()
        except Exception as e:
            return self._fail_all(payouts, f"Could not read payout wallet balance: {e}")
        if balance < total:
            return self._fail_all(
                payouts,
                f"Insufficient payout wallet balance: {balance} < {total}"
            )

        results: List[PayoutResult] = []
        for index, payout in enumerate(payouts):
            if index and self.transfer_delay > 0:
                await asyncio.sleep(self.transfer_delay)

            if isinstance(payout.amount, bool) or not isinstance(payout.amount, int) or payout.amount <= 0:
                results.append(PayoutResult(
                    wallet_address=payout.wallet_address,
                    amount=payout.amount,
                    status=PayoutStatus.FAILED,
                    error=f"Invalid payout amount: {payout.amount}",
                ))
                continue

            try:
                signature = await self._transfer(payout.wallet_address, payout.amount)
            except Exception as e:
                logger.error(
                    "Payout transfer failed",
                    wallet_address=payout.wallet_address,
                    amount=payout.amount,
                    error=str(e)
                )
                results.append(PayoutResult(
                    wallet_address=payout.wallet_address,
                    amount=payout.amount,
                    status=PayoutStatus.FAILED,
                    error=str(e),
                ))
                continue

            logger.info(
                "Payout transfer completed",
                wallet_address=payout.wallet_address,
                amount=payout.amount,
                signature=signature
            )
            results.append(PayoutResult(
                wallet_address=payout.wallet_address,
                amount=payout.amount,
                status=PayoutStatus.SUCCESS,
                transaction_reference=signature,
            ))

        return results
