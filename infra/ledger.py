"""
Autonomy Infra: Ledger Client (Base via web3.py)

Narrow read/write surface over the chain:
- Batched multi-read (one JSON-RPC round trip)
- Single reads, fee price and native balance queries
- Gas estimation and "submit and wait for confirmation" for mutating calls
"""

import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Sequence, Tuple

from eth_account import Account
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

from core.exceptions import AutonomyError, ErrorClass
from core.price import OracleRound
from infra.contracts import (
    BASE_CHAIN_ID,
    BASE_RPC_URL,
    CHAINLINK_PRICE_FEED_ABI,
    ERC20_ABI,
)

logger = logging.getLogger(__name__)


class SubmitFailure(Enum):
    REVERTED = "reverted"
    UNDERPRICED = "underpriced"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    UNCONFIRMED = "unconfirmed"


@dataclass(frozen=True)
class ContractCall:
    """A described contract function invocation."""
    address: str
    abi: Sequence[dict]
    function: str
    args: Tuple[Any, ...] = ()


@dataclass(frozen=True)
class TxReceipt:
    tx_hash: str
    status: int
    block_number: Optional[int] = None
    gas_used: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status == 1


def load_account(private_key: Optional[str] = None):
    """Derive the signing account from PRIVATE_KEY, validating its shape first."""
    pk = private_key or os.getenv("PRIVATE_KEY", "")
    if not pk:
        raise ValueError("PRIVATE_KEY environment variable is required")
    if not pk.startswith("0x"):
        raise ValueError("PRIVATE_KEY must be 0x-prefixed")
    if len(pk) != 66:
        raise ValueError("PRIVATE_KEY must be a 64-character hex string (with 0x prefix)")
    if pk == "0x" + "0" * 64:
        raise ValueError("PRIVATE_KEY appears to be a placeholder (all zeros)")
    return Account.from_key(pk)


def classify_submit_error(exc: BaseException) -> AutonomyError:
    """Map node/web3 failures onto the error taxonomy with a structured reason."""
    if isinstance(exc, AutonomyError):
        return exc
    if isinstance(exc, ContractLogicError):
        return AutonomyError.non_retryable(
            f"Transaction reverted: {exc}", cause=exc,
            details={"reason": SubmitFailure.REVERTED.value},
        )
    if isinstance(exc, TimeExhausted):
        # Resubmitting could double-spend once the original lands
        return AutonomyError.non_retryable(
            f"Transaction not confirmed in time: {exc}", cause=exc,
            details={"reason": SubmitFailure.UNCONFIRMED.value},
        )

    message = str(exc).lower()
    if "underpriced" in message or "fee too low" in message:
        return AutonomyError.recoverable(
            f"Transaction underpriced: {exc}", cause=exc,
            details={"reason": SubmitFailure.UNDERPRICED.value},
        )
    if "insufficient funds" in message:
        return AutonomyError.non_retryable(
            f"Insufficient balance for transaction: {exc}", cause=exc,
            details={"reason": SubmitFailure.INSUFFICIENT_BALANCE.value},
        )
    return AutonomyError(ErrorClass.FATAL, f"Transaction submission failed: {exc}", cause=exc)


class LedgerClient:
    """
    web3.py connector for the autonomy loop.

    Read-only when constructed without a private key; ``address`` may still be
    supplied to scope balance reads.
    """

    def __init__(self, rpc_url: Optional[str] = None, private_key: Optional[str] = None,
                 chain_id: int = BASE_CHAIN_ID, web3: Optional[Web3] = None,
                 address: Optional[str] = None, confirmation_timeout: float = 120.0,
                 poll_latency: float = 2.0):
        self.rpc_url = rpc_url or os.getenv("BASE_RPC_URL", BASE_RPC_URL)
        self.w3 = web3 or Web3(Web3.HTTPProvider(self.rpc_url, request_kwargs={"timeout": 20}))
        self.chain_id = chain_id
        self.confirmation_timeout = confirmation_timeout
        self.poll_latency = poll_latency

        self._account = load_account(private_key) if private_key else None
        if self._account is not None:
            self._address = self._account.address
        elif address:
            self._address = Web3.to_checksum_address(address)
        else:
            self._address = None

        logger.info(f"Initialized LedgerClient (rpc={self.rpc_url}, chain_id={chain_id}, "
                    f"read_only={self._account is None})")

    @property
    def read_only(self) -> bool:
        return self._account is None

    @property
    def address(self) -> str:
        if self._address is None:
            raise ValueError("LedgerClient has no account address configured")
        return self._address

    def _function(self, call: ContractCall):
        contract = self.w3.eth.contract(address=Web3.to_checksum_address(call.address), abi=list(call.abi))
        return getattr(contract.functions, call.function)(*call.args)

    def read(self, call: ContractCall) -> Any:
        return self._function(call).call()

    def multi_read(self, calls: Sequence[ContractCall]) -> List[Any]:
        """Read several named values in a single batched round trip."""
        if not calls:
            return []
        with self.w3.batch_requests() as batch:
            for call in calls:
                batch.add(self._function(call))
            return list(batch.execute())

    def fee_price(self) -> int:
        return int(self.w3.eth.gas_price)

    def balance(self, address: Optional[str] = None) -> int:
        return int(self.w3.eth.get_balance(address or self.address))

    def token_balance(self, token: str, holder: Optional[str] = None) -> int:
        return int(self.read(ContractCall(token, ERC20_ABI, "balanceOf", (holder or self.address,))))

    def latest_round(self, feed: str) -> OracleRound:
        round_data, decimals = self.multi_read([
            ContractCall(feed, CHAINLINK_PRICE_FEED_ABI, "latestRoundData"),
            ContractCall(feed, CHAINLINK_PRICE_FEED_ABI, "decimals"),
        ])
        round_id, answer, _started_at, updated_at, _answered_in = round_data
        return OracleRound(answer=int(answer), decimals=int(decimals),
                           updated_at=int(updated_at), round_id=int(round_id))

    def estimate_gas(self, call: ContractCall, value: int = 0) -> int:
        try:
            return int(self._function(call).estimate_gas({"from": self.address, "value": value}))
        except (ContractLogicError, ValueError, Web3Exception) as exc:
            raise classify_submit_error(exc)

    def submit(self, call: ContractCall, value: int = 0) -> TxReceipt:
        """
        Sign, send and wait for one confirmation of a mutating call.

        Failures before the broadcast are classified normally and may be
        retried. Once the node has accepted the transaction, any failure while
        waiting is NON_RETRYABLE: a rebuilt transaction would get a fresh nonce
        and could land alongside the first one.
        """
        if self._account is None:
            raise AutonomyError.non_retryable("LedgerClient is read-only; PRIVATE_KEY required to submit")

        try:
            tx = self._function(call).build_transaction({
                "from": self.address,
                "value": value,
                "chainId": self.chain_id,
                "nonce": self.w3.eth.get_transaction_count(self.address, "pending"),
            })
            signed = self._account.sign_transaction(tx)
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except (ContractLogicError, ValueError, Web3Exception) as exc:
            raise classify_submit_error(exc)
        logger.info(f"{call.function}: submitted tx {tx_hash.hex()}")

        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.confirmation_timeout, poll_latency=self.poll_latency
            )
        except Exception as exc:
            logger.error(f"{call.function}: lost track of tx {tx_hash.hex()} after broadcast: {exc}")
            raise AutonomyError.non_retryable(
                f"Transaction {tx_hash.hex()} not confirmed: {exc}", cause=exc,
                details={"reason": SubmitFailure.UNCONFIRMED.value, "tx_hash": tx_hash.hex()},
            )

        result = TxReceipt(
            tx_hash=tx_hash.hex(),
            status=int(receipt["status"]),
            block_number=receipt.get("blockNumber"),
            gas_used=receipt.get("gasUsed"),
        )
        if not result.succeeded:
            raise AutonomyError.non_retryable(
                f"Transaction reverted: {result.tx_hash}",
                details={"reason": SubmitFailure.REVERTED.value, "tx_hash": result.tx_hash},
            )
        return result
