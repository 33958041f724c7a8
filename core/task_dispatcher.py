"""
Autonomy Core: Task Dispatcher

Routes skill tasks to the gateway on behalf of agent wallets. Token
holdings decide the tier and the daily quota enforced before dispatch.

Dispatch never raises: every failure comes back as an unsuccessful
TaskResult.
"""

import logging
import threading
import time
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union
from uuid import uuid4

from pydantic import ValidationError

from core.context import AutonomyContext
from core.quota import Tier
from core.retry import with_retry
from core.schemas import TaskRequest, safe_validate_task_params
from core.validation import validate_address
from infra.contracts import TOKEN_DECIMALS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AgentInfo:
    wallet: str
    balance_wei: int
    tier: Tier

    @property
    def balance(self) -> Decimal:
        return Decimal(self.balance_wei).scaleb(-TOKEN_DECIMALS)

    @property
    def daily_quota(self) -> Optional[int]:
        return self.tier.daily_quota


@dataclass
class TaskResult:
    success: bool
    task_id: str
    skill: str
    result: Any = None
    error: Optional[str] = None
    tier: Optional[str] = None
    quota_remaining: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class UsageTracker:
    """Per-wallet task counts for the current UTC day."""

    def __init__(self, clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        self._clock = clock
        self._lock = threading.Lock()
        self._counts: Dict[Tuple[str, str], int] = defaultdict(int)

    def _key(self, wallet: str) -> Tuple[str, str]:
        return wallet.lower(), self._clock().date().isoformat()

    def used(self, wallet: str) -> int:
        with self._lock:
            return self._counts.get(self._key(wallet), 0)

    def remaining(self, wallet: str, quota: Optional[int]) -> Optional[int]:
        if quota is None:
            return None
        return max(0, quota - self.used(wallet))

    def try_reserve(self, wallet: str, quota: Optional[int]) -> bool:
        """Count one task against today's quota if any remains."""
        with self._lock:
            key = self._key(wallet)
            if quota is not None and self._counts[key] >= quota:
                return False
            self._counts[key] += 1
            return True

    def release(self, wallet: str) -> None:
        with self._lock:
            key = self._key(wallet)
            if self._counts.get(key, 0) > 0:
                self._counts[key] -= 1


class TaskDispatcher:
    def __init__(self, context: AutonomyContext, usage: Optional[UsageTracker] = None):
        self.context = context
        self.usage = usage or UsageTracker()

    def get_agent_info(self, wallet: str) -> AgentInfo:
        wallet = validate_address(wallet, "wallet")
        balance_wei = with_retry(
            lambda: self.context.ledger.token_balance(self.context.token, wallet),
            self.context.retry_policy,
            name="token balance",
            sleep=self.context.sleep,
        )
        tier = self.context.quota.tier_for(Decimal(balance_wei).scaleb(-TOKEN_DECIMALS))
        return AgentInfo(wallet=wallet, balance_wei=int(balance_wei), tier=tier)

    def dispatch_task(self, request: Union[TaskRequest, Dict[str, Any]]) -> TaskResult:
        task_id = f"task_{int(time.time() * 1000)}_{uuid4().hex[:6]}"
        skill = request.skill if isinstance(request, TaskRequest) else str(request.get("skill", ""))

        try:
            if not isinstance(request, TaskRequest):
                request = TaskRequest.model_validate(request)
        except ValidationError as exc:
            return self._failed(task_id, skill, f"Invalid task request: {exc.error_count()} error(s)")

        logger.info(f"Task {task_id}: skill={request.skill} agent={request.agent_wallet} "
                    f"priority={request.priority}")

        validation = safe_validate_task_params(request.skill, request.params)
        if not validation["success"]:
            return self._failed(task_id, request.skill, f"Invalid params: {validation['error']}")

        try:
            agent = self.get_agent_info(request.agent_wallet)
        except Exception as exc:
            return self._failed(task_id, request.skill, f"Agent lookup failed: {exc}")

        if not self.usage.try_reserve(agent.wallet, agent.daily_quota):
            return self._failed(
                task_id, request.skill,
                f"Daily quota exceeded for tier {agent.tier.name} ({agent.daily_quota}/day)",
                tier=agent.tier.name, quota_remaining=0,
            )

        self.context.metrics.task_dispatched(request.skill, agent.tier.name)
        started = time.monotonic()
        try:
            payload = self.context.gateway.execute_skill(request.skill, request.params, agent.wallet)
        except Exception as exc:
            self.usage.release(agent.wallet)
            return self._failed(
                task_id, request.skill, f"Gateway error: {exc}", tier=agent.tier.name,
                quota_remaining=self.usage.remaining(agent.wallet, agent.daily_quota),
            )

        self.context.metrics.task_completed(request.skill, time.monotonic() - started)
        logger.info(f"Task {task_id} completed")
        return TaskResult(
            success=True,
            task_id=task_id,
            skill=request.skill,
            result=payload,
            tier=agent.tier.name,
            quota_remaining=self.usage.remaining(agent.wallet, agent.daily_quota),
        )

    def batch_dispatch(self, requests: Sequence[Union[TaskRequest, Dict[str, Any]]],
                       parallel: bool = False, max_workers: int = 4) -> List[TaskResult]:
        """Results come back in request order."""
        logger.info(f"Batch dispatch: {len(requests)} tasks ({'parallel' if parallel else 'sequential'})")
        if not parallel:
            return [self.dispatch_task(request) for request in requests]
        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="dispatch") as pool:
            return list(pool.map(self.dispatch_task, requests))

    def _failed(self, task_id: str, skill: str, error: str, **kwargs) -> TaskResult:
        logger.warning(f"Task {task_id} failed: {error}")
        self.context.metrics.task_failed(skill, error)
        return TaskResult(success=False, task_id=task_id, skill=skill, error=error, **kwargs)
