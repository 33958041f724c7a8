"""Quota gateway HTTP client: skill execution keyed by the caller's wallet."""

import logging
import os
from typing import Any, Dict, Optional

import requests

from core.retry import RetryPolicy, request_with_retry

logger = logging.getLogger(__name__)

DEFAULT_GATEWAY_URL = "https://upskill-gateway-production.up.railway.app"


class GatewayClient:
    def __init__(self, base_url: Optional[str] = None, policy: Optional[RetryPolicy] = None,
                 session: Optional[requests.Session] = None):
        self.base_url = (base_url or os.getenv("UPSKILL_GATEWAY_URL", DEFAULT_GATEWAY_URL)).rstrip("/")
        self.policy = policy or RetryPolicy()
        self.session = session or requests.Session()

    def execute_skill(self, skill: str, params: Dict[str, Any], wallet: str) -> Any:
        """POST the params to ``/skill/{skill}``; raises AutonomyError on failure."""
        return request_with_retry(
            "POST", f"{self.base_url}/skill/{skill}", self.policy,
            session=self.session,
            headers={"Content-Type": "application/json", "X-Wallet-Address": wallet},
            json=params,
        )
