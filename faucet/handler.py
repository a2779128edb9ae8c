"""Request-to-transaction lifecycle for the faucet.

``TransferHandler.handle`` never raises for an expected failure. It returns
either a ``TransferResult`` or a ``TransferError`` and the HTTP layer maps
the two. Cancellation of the calling task is the only thing that escapes.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Protocol, Union

from wallet.wallet import FAUCET_AMOUNT, PendingTransfer, WalletIdentity, format_amount


log = logging.getLogger("bnb.faucet.handler")


class ChainClient(Protocol):
    def is_address(self, value: Any) -> bool: ...

    async def submit_transfer(self, identity: WalletIdentity, recipient: str, amount: Decimal) -> PendingTransfer: ...

    async def wait_for_confirmation(self, pending: PendingTransfer) -> Any: ...

    async def close(self) -> None: ...


class ErrorCategory(str, Enum):
    MISSING_RECIPIENT = "MissingRecipient"
    INVALID_RECIPIENT = "InvalidRecipient"
    SUBMISSION_FAILED = "SubmissionFailed"
    CONFIRMATION_FAILED = "ConfirmationFailed"

    @property
    def status_code(self) -> int:
        if self in (ErrorCategory.MISSING_RECIPIENT, ErrorCategory.INVALID_RECIPIENT):
            return 400
        return 500


@dataclass(frozen=True)
class TransferRequest:
    recipient: Optional[Any] = None


@dataclass(frozen=True)
class TransferResult:
    transaction_hash: str
    recipient: str
    amount: str
    success: bool = True

    def to_body(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "txHash": self.transaction_hash,
            "recipient": self.recipient,
            "amount": self.amount,
        }


@dataclass(frozen=True)
class TransferError:
    category: ErrorCategory
    message: str

    @property
    def status_code(self) -> int:
        return self.category.status_code

    def to_body(self) -> Dict[str, Any]:
        if self.category is ErrorCategory.MISSING_RECIPIENT:
            return {"error": "Recipient address is required"}
        if self.category is ErrorCategory.INVALID_RECIPIENT:
            return {"error": "Invalid recipient address"}
        return {"error": "Transaction failed", "message": self.message}


TransferOutcome = Union[TransferResult, TransferError]


class TransferHandler:
    def __init__(self, client: ChainClient, identity: WalletIdentity, amount: Decimal = FAUCET_AMOUNT):
        self.client = client
        self.identity = identity
        self.amount = amount

    async def handle(self, request: TransferRequest) -> TransferOutcome:
        recipient = request.recipient
        if recipient is None or recipient == "":
            return TransferError(ErrorCategory.MISSING_RECIPIENT, "Recipient address is required")
        if not self.client.is_address(recipient):
            log.info("Rejected invalid recipient %r", recipient)
            return TransferError(ErrorCategory.INVALID_RECIPIENT, "Invalid recipient address")

        try:
            pending = await self.client.submit_transfer(self.identity, recipient, self.amount)
        except Exception as exc:
            log.error("Submission to %s failed: %s", recipient, exc)
            return TransferError(ErrorCategory.SUBMISSION_FAILED, str(exc))

        try:
            await self.client.wait_for_confirmation(pending)
        except asyncio.CancelledError:
            # funds are already in flight; only the wait is abandoned
            log.warning("Confirmation wait for %s cancelled; transfer was already submitted", pending.tx_hash)
            raise
        except Exception as exc:
            log.error("Confirmation of %s failed: %s", pending.tx_hash, exc)
            return TransferError(ErrorCategory.CONFIRMATION_FAILED, str(exc))

        log.info("Sent %s to %s in %s", format_amount(self.amount), recipient, pending.tx_hash)
        return TransferResult(
            transaction_hash=pending.tx_hash,
            recipient=recipient,
            amount=format_amount(self.amount),
        )
