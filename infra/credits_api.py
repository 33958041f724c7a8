"""
Autonomy Infra: Credit Service Client

Two JSON endpoints:
- GET  /credits          -> {"data": {"total_credits", "total_usage"}}
- POST /credits/coinbase -> signed transfer intent for an on-chain purchase
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import requests

from core.exceptions import AutonomyError
from core.retry import RetryPolicy, request_with_retry
from infra.contracts import BASE_CHAIN_ID

logger = logging.getLogger(__name__)

CREDITS_BASE_URL = "https://openrouter.ai/api/v1"


@dataclass(frozen=True)
class PurchaseIntent:
    """Signed purchase intent returned by the credit service."""
    contract_address: str
    recipient_amount: int
    deadline: str
    recipient: str
    recipient_currency: str
    refund_destination: str
    fee_amount: int
    intent_id: str
    operator: str
    signature: str
    prefix: str

    @classmethod
    def from_response(cls, payload: Dict[str, Any]) -> "PurchaseIntent":
        try:
            transfer_intent = payload["data"]["web3_data"]["transfer_intent"]
            metadata = transfer_intent["metadata"]
            call_data = transfer_intent["call_data"]
            return cls(
                contract_address=metadata["contract_address"],
                recipient_amount=int(call_data["recipient_amount"]),
                deadline=call_data["deadline"],
                recipient=call_data["recipient"],
                recipient_currency=call_data["recipient_currency"],
                refund_destination=call_data["refund_destination"],
                fee_amount=int(call_data["fee_amount"]),
                intent_id=call_data["id"],
                operator=call_data["operator"],
                signature=call_data["signature"],
                prefix=call_data["prefix"],
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise AutonomyError.non_retryable(f"Malformed purchase intent response: {exc}", cause=exc)

    def as_call_tuple(self, deadline_unix: int) -> Tuple[Any, ...]:
        """TransferIntent struct in ABI component order."""
        return (
            self.recipient_amount,
            deadline_unix,
            self.recipient,
            self.recipient_currency,
            self.refund_destination,
            self.fee_amount,
            bytes.fromhex(self.intent_id[2:]),
            self.operator,
            bytes.fromhex(self.signature[2:]),
            bytes.fromhex(self.prefix[2:]),
        )


class CreditsClient:
    """HTTP client for credit balance and purchase intents."""

    def __init__(self, api_key: Optional[str] = None, base_url: str = CREDITS_BASE_URL,
                 policy: Optional[RetryPolicy] = None, session: Optional[requests.Session] = None,
                 chain_id: int = BASE_CHAIN_ID):
        self.api_key = api_key or os.getenv("OPENROUTER_API_KEY", "")
        self.base_url = base_url.rstrip("/")
        self.policy = policy or RetryPolicy()
        self.session = session or requests.Session()
        self.chain_id = chain_id

    def _headers(self) -> Dict[str, str]:
        if not self.api_key:
            raise AutonomyError.non_retryable("OPENROUTER_API_KEY not set")
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def get_balance(self) -> Dict[str, float]:
        payload = request_with_retry(
            "GET", f"{self.base_url}/credits", self.policy,
            session=self.session, headers=self._headers(),
        )
        try:
            data = payload["data"]
            return {
                "total_credits": float(data["total_credits"]),
                "total_usage": float(data["total_usage"]),
            }
        except (KeyError, TypeError, ValueError) as exc:
            raise AutonomyError.non_retryable(f"Malformed credits response: {exc}", cause=exc)

    def get_purchase_intent(self, amount: float, sender: str) -> PurchaseIntent:
        logger.info(f"Requesting purchase calldata for ${amount}...")
        payload = request_with_retry(
            "POST", f"{self.base_url}/credits/coinbase", self.policy,
            session=self.session, headers=self._headers(),
            json={"amount": amount, "sender": sender, "chain_id": self.chain_id},
        )
        return PurchaseIntent.from_response(payload)
