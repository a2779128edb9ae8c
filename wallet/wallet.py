"""BNB faucet wallet: signing identity, chain client and operator CLI.

The faucet holds a single signing identity derived from ``PRIVATE_KEY``.
Transfers are signed locally with ``eth_account`` and broadcast through an
EVM JSON-RPC endpoint (``RPC_URL``) using ``web3``'s async client.

Environment variables:
  RPC_URL       JSON-RPC endpoint of the chain (BNB Smart Chain or testnet)
  PRIVATE_KEY   Hex private key of the faucet wallet

Run:
  bnb-wallet address
  bnb-wallet balance [ADDRESS]
  bnb-wallet send --to 0x... [--amount 0.0002]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import Web3Exception


log = logging.getLogger("bnb.wallet")

NATIVE_SYMBOL = "BNB"
FAUCET_AMOUNT = Decimal("0.0002")
DEFAULT_CONFIRM_TIMEOUT_S = 120.0
DEFAULT_CONFIRM_POLL_S = 1.0


class ChainClientError(RuntimeError):
    """The chain accepted a transfer but did not execute it."""


def format_amount(amount: Decimal) -> str:
    return f"{amount} {NATIVE_SYMBOL}"


def parse_amount(raw: str) -> Decimal:
    try:
        amount = Decimal(raw)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"Invalid amount '{raw}'") from exc
    if amount <= 0:
        raise argparse.ArgumentTypeError("Amount must be positive")
    return amount


@dataclass(frozen=True)
class WalletIdentity:
    """The faucet's signing key and the address derived from it."""

    address: str
    account: LocalAccount = field(repr=False, compare=False)

    @classmethod
    def from_private_key(cls, private_key: str) -> "WalletIdentity":
        try:
            account = Account.from_key(private_key.strip())
        except Exception as exc:
            # never echo the key itself
            raise ValueError(f"PRIVATE_KEY is not a valid private key ({type(exc).__name__})") from exc
        return cls(address=account.address, account=account)


@dataclass(frozen=True)
class PendingTransfer:
    tx_hash: str
    sender: str
    recipient: str
    value_wei: int
    nonce: int


@dataclass(frozen=True)
class Confirmation:
    tx_hash: str
    block_number: int
    gas_used: int


class Web3ChainClient:
    """Address validation, transfer submission and receipt waiting over JSON-RPC.

    One instance is shared by every request. Nonces are read with the
    ``pending`` tag on each submission; nothing here serializes concurrent
    submissions from the same wallet.
    """

    def __init__(
        self,
        w3: AsyncWeb3,
        confirm_timeout: float = DEFAULT_CONFIRM_TIMEOUT_S,
        poll_latency: float = DEFAULT_CONFIRM_POLL_S,
    ):
        self.w3 = w3
        self.confirm_timeout = confirm_timeout
        self.poll_latency = poll_latency
        self._chain_id: Optional[int] = None

    @classmethod
    def connect(cls, rpc_url: str, **kwargs: Any) -> "Web3ChainClient":
        return cls(AsyncWeb3(AsyncHTTPProvider(rpc_url)), **kwargs)

    @staticmethod
    def is_address(value: Any) -> bool:
        """Hex address check; mixed-case input must carry a valid EIP-55 checksum."""
        if not isinstance(value, str) or not Web3.is_address(value):
            return False
        digits = value[2:] if value[:2].lower() == "0x" else value
        if digits == digits.lower() or digits == digits.upper():
            return True
        return Web3.is_checksum_address(value)

    async def close(self) -> None:
        await self.w3.provider.disconnect()

    async def chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = await self.w3.eth.chain_id
        return self._chain_id

    async def balance(self, address: str) -> Decimal:
        wei = await self.w3.eth.get_balance(Web3.to_checksum_address(address))
        return Decimal(Web3.from_wei(wei, "ether"))

    async def submit_transfer(self, identity: WalletIdentity, recipient: str, amount: Decimal) -> PendingTransfer:
        to_addr = Web3.to_checksum_address(recipient)
        value = Web3.to_wei(amount, "ether")
        nonce = await self.w3.eth.get_transaction_count(identity.address, "pending")
        tx: Dict[str, Any] = {
            "from": identity.address,
            "to": to_addr,
            "value": value,
            "nonce": nonce,
            "chainId": await self.chain_id(),
            "gasPrice": await self.w3.eth.gas_price,
        }
        tx["gas"] = await self.w3.eth.estimate_gas({"from": identity.address, "to": to_addr, "value": value})
        signed = identity.account.sign_transaction(tx)
        tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        pending = PendingTransfer(
            tx_hash=Web3.to_hex(tx_hash),
            sender=identity.address,
            recipient=to_addr,
            value_wei=value,
            nonce=nonce,
        )
        log.info("Submitted %s: %d wei %s -> %s (nonce=%d)", pending.tx_hash, value, identity.address, to_addr, nonce)
        return pending

    async def wait_for_confirmation(self, pending: PendingTransfer) -> Confirmation:
        # TimeExhausted and RPC errors propagate with web3's own message
        receipt = await self.w3.eth.wait_for_transaction_receipt(
            pending.tx_hash,
            timeout=self.confirm_timeout,
            poll_latency=self.poll_latency,
        )
        if receipt["status"] != 1:
            raise ChainClientError(f"Transaction {pending.tx_hash} reverted in block {receipt['blockNumber']}")
        log.info("Confirmed %s in block %d", pending.tx_hash, receipt["blockNumber"])
        return Confirmation(
            tx_hash=pending.tx_hash,
            block_number=receipt["blockNumber"],
            gas_used=receipt["gasUsed"],
        )


def _identity_from(args: argparse.Namespace) -> WalletIdentity:
    private_key = args.private_key or os.getenv("PRIVATE_KEY")
    if not private_key:
        raise ValueError("PRIVATE_KEY is not set (use --private-key or the environment)")
    return WalletIdentity.from_private_key(private_key)


def _client_from(args: argparse.Namespace, **kwargs: Any) -> Web3ChainClient:
    rpc_url = args.rpc_url or os.getenv("RPC_URL")
    if not rpc_url:
        raise ValueError("RPC_URL is not set (use --rpc-url or the environment)")
    return Web3ChainClient.connect(rpc_url, **kwargs)


def cmd_address(args: argparse.Namespace) -> None:
    print(_identity_from(args).address)


async def _balance(client: Web3ChainClient, address: str) -> Decimal:
    try:
        return await client.balance(address)
    finally:
        await client.close()


def cmd_balance(args: argparse.Namespace) -> None:
    address = args.address or _identity_from(args).address
    if not Web3ChainClient.is_address(address):
        raise ValueError(f"Invalid address '{address}'")
    client = _client_from(args)
    balance = asyncio.run(_balance(client, address))
    print(f"{address} {format_amount(balance)}")


async def _send(client: Web3ChainClient, identity: WalletIdentity, to_addr: str, amount: Decimal) -> Confirmation:
    try:
        pending = await client.submit_transfer(identity, to_addr, amount)
        print(f"Transaction submitted: {pending.tx_hash}")
        return await client.wait_for_confirmation(pending)
    finally:
        await client.close()


def cmd_send(args: argparse.Namespace) -> None:
    if not Web3ChainClient.is_address(args.to):
        raise ValueError(f"Invalid recipient address '{args.to}'")
    identity = _identity_from(args)
    client = _client_from(args, confirm_timeout=args.timeout)
    confirmation = asyncio.run(_send(client, identity, args.to, args.amount))
    print(f"Sent {format_amount(args.amount)} to {args.to}")
    print(f"Confirmed in block {confirmation.block_number} (gas used {confirmation.gas_used})")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="BNB faucet wallet CLI")
    parser.set_defaults(func=None)
    sub = parser.add_subparsers(dest="command")

    def add_common(subparser, rpc: bool = True):
        subparser.add_argument("--private-key", dest="private_key", help="Faucet private key (default: $PRIVATE_KEY)")
        if rpc:
            subparser.add_argument("--rpc-url", dest="rpc_url", help="JSON-RPC endpoint (default: $RPC_URL)")

    address_parser = sub.add_parser("address", help="Print the faucet wallet address")
    add_common(address_parser, rpc=False)
    address_parser.set_defaults(func=cmd_address)

    balance_parser = sub.add_parser("balance", help="Show the native balance of an address")
    add_common(balance_parser)
    balance_parser.add_argument("address", nargs="?", help="Address to query (default: the faucet wallet)")
    balance_parser.set_defaults(func=cmd_balance)

    send_parser = sub.add_parser("send", help="Send BNB from the faucet wallet and wait for confirmation")
    add_common(send_parser)
    send_parser.add_argument("--to", required=True, help="Destination address")
    send_parser.add_argument(
        "--amount",
        type=parse_amount,
        default=FAUCET_AMOUNT,
        help=f"Amount of BNB to send (default: {FAUCET_AMOUNT})",
    )
    send_parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_CONFIRM_TIMEOUT_S,
        help=f"Seconds to wait for confirmation (default: {DEFAULT_CONFIRM_TIMEOUT_S:g})",
    )
    send_parser.set_defaults(func=cmd_send)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1
    try:
        args.func(args)
    except (ValueError, ChainClientError, Web3Exception) as err:
        print(f"Error: {err}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
