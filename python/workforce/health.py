"""Periodic HTTP health probing of members.

Every tick probes each member's ``/health`` endpoint concurrently. A member
that fails ``unhealthy_threshold`` probes in a row is latched unhealthy in the
registry and drops out of routing; one good probe brings it back.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, replace
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from workforce.config import HealthCheckConfig
from workforce.enhanced_logging import track_performance
from workforce.exceptions import NotFoundError, RoutingError
from workforce.models import Member, MemberStatus, TaskStatus, SerializableMixin, utcnow

if TYPE_CHECKING:
    from workforce.manager import DepartmentManager

logger = logging.getLogger(__name__)

HEALTHY_STATUSES = ("healthy", "ok")


@dataclass
class MemberHealth(SerializableMixin):
    member_id: str
    status: str = "unknown"
    last_check: Optional[datetime] = None
    response_time: float = 0.0
    success_rate: float = 0.0
    failed_checks: int = 0
    consecutive_fails: int = 0
    is_healthy: bool = True
    last_error: str = ""


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class HealthChecker:
    """Background prober that flips member status between online and unhealthy."""

    def __init__(
        self,
        manager: "DepartmentManager",
        config: HealthCheckConfig,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._manager = manager
        self.config = config
        self._client = client
        self._owns_client = False
        self._health: Dict[str, MemberHealth] = {}
        self._lock = threading.Lock()
        self._stop_event: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None
        self.is_running = False

    async def start(self) -> None:
        if self.is_running:
            return
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.timeout)
            self._owns_client = True
        self.is_running = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            "Health checker started: interval=%.1fs threshold=%d",
            self.config.check_interval, self.config.unhealthy_threshold,
        )

    async def stop(self) -> None:
        """Signal the loop and wait for the current round to finish."""
        if not self.is_running:
            return
        self.is_running = False
        self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
            self._owns_client = False
        logger.info("Health checker stopped")

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.config.check_interval)
                break
            except asyncio.TimeoutError:
                pass
            try:
                await self.check_all_members()
            except Exception:
                logger.exception("Health check round failed")

    # ── Probing ─────────────────────────────────────────────────────────

    @track_performance(operation="health.check_all_members", slow_after=10.0)
    async def check_all_members(self) -> Dict[str, MemberHealth]:
        """Probe every member with an endpoint once, concurrently."""
        if self._client is not None:
            return await self._check_all(self._client)
        async with httpx.AsyncClient(timeout=self.config.timeout) as client:
            return await self._check_all(client)

    async def _check_all(self, client: httpx.AsyncClient) -> Dict[str, MemberHealth]:
        members = self._manager.list_members()
        known = {m.id for m in members}
        with self._lock:
            for member_id in list(self._health):
                if member_id not in known:
                    del self._health[member_id]

        targets = [m for m in members if m.endpoint and m.status != MemberStatus.OFFLINE]
        if not targets:
            return {}
        results = await asyncio.gather(*(self.check_member(m, client) for m in targets))
        return {health.member_id: health for health in results}

    async def check_member(self, member: Member, client: httpx.AsyncClient) -> MemberHealth:
        started = time.perf_counter()
        error = await self._probe(member, client)
        elapsed = time.perf_counter() - started
        health = self._record(member, error, elapsed)
        self._apply(member.id, health)
        return health

    async def _probe(self, member: Member, client: httpx.AsyncClient) -> Optional[str]:
        """None when healthy, otherwise the reason the probe failed."""
        url = f"{member.endpoint.rstrip('/')}/health"
        try:
            response = await self._get(client, url, self._auth_headers(member))
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            return f"health check request failed: {e}"

        if response.status_code != 200:
            return f"unhealthy status code: {response.status_code}"
        try:
            payload = response.json()
        except ValueError:
            return "malformed health response"
        if not isinstance(payload, dict):
            return "malformed health response"

        status = payload.get("status")
        if status not in HEALTHY_STATUSES:
            return f"unhealthy status: {status}"
        return self._check_role_thresholds(member, payload.get("metrics"))

    async def _get(self, client: httpx.AsyncClient, url: str, headers: Dict[str, str]) -> httpx.Response:
        @retry(
            stop=stop_after_attempt(self.config.retry_count + 1),
            wait=wait_exponential(multiplier=self.config.retry_backoff, max=self.config.timeout),
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True,
        )
        async def _call() -> httpx.Response:
            return await client.get(url, headers=headers, timeout=self.config.timeout)

        return await _call()

    @staticmethod
    def _auth_headers(member: Member) -> Dict[str, str]:
        token = member.metadata.get("auth_token") or member.id
        method = member.auth_method.lower()
        if method == "bearer":
            return {"Authorization": f"Bearer {token}"}
        if method == "api-key":
            return {"X-API-Key": token}
        return {}

    def _check_role_thresholds(self, member: Member, metrics: Any) -> Optional[str]:
        check = self.config.role_specific_checks.get(member.role)
        if check is None or not isinstance(metrics, dict):
            return None

        response_time = metrics.get("response_time")
        if check.response_time is not None and _is_number(response_time):
            if response_time > check.response_time:
                return f"response time too high: {response_time}s > {check.response_time}s"

        success_rate = metrics.get("task_success_rate")
        if check.task_success is not None and _is_number(success_rate):
            if success_rate < check.task_success:
                return f"task success rate too low: {success_rate} < {check.task_success}"

        uptime = metrics.get("uptime")
        if check.uptime is not None and _is_number(uptime):
            if uptime < check.uptime:
                return f"uptime too low: {uptime} < {check.uptime}"
        return None

    # ── State ───────────────────────────────────────────────────────────

    def _record(self, member: Member, error: Optional[str], elapsed: float) -> MemberHealth:
        try:
            success_rate: Optional[float] = self._manager.get_member_stats(member.id).success_rate
        except NotFoundError:
            success_rate = None

        with self._lock:
            health = self._health.setdefault(member.id, MemberHealth(member_id=member.id))
            health.last_check = utcnow()
            health.response_time = elapsed
            if success_rate is not None:
                health.success_rate = success_rate
            if error is None:
                health.status = "healthy"
                health.is_healthy = True
                health.consecutive_fails = 0
                health.last_error = ""
            else:
                health.status = "unhealthy"
                health.is_healthy = False
                health.failed_checks += 1
                health.consecutive_fails += 1
                health.last_error = error
            return replace(health)

    def _apply(self, member_id: str, health: MemberHealth) -> None:
        """Write the probe outcome back to the registry."""
        threshold = self.config.unhealthy_threshold
        latched = False
        with self._manager.lock:
            try:
                member = self._manager.get_member(member_id)
            except NotFoundError:
                return

            score = 1.0 if health.is_healthy else max(0.0, 1.0 - health.consecutive_fails / threshold)
            if score != member.health_score:
                self._manager.update_member_health(member_id, score, {"probe_time": health.response_time})

            if health.is_healthy:
                if member.status == MemberStatus.UNHEALTHY:
                    restored = MemberStatus.ONLINE if member.has_capacity else MemberStatus.BUSY
                    self._manager.update_member_status(member_id, restored)
                    logger.info("Member recovered: id=%s status=%s", member_id, restored.value)
            elif health.consecutive_fails >= threshold and member.status != MemberStatus.UNHEALTHY:
                self._manager.update_member_status(member_id, MemberStatus.UNHEALTHY)
                latched = True
                logger.warning(
                    "Member marked unhealthy: id=%s consecutive_fails=%d error=%s",
                    member_id, health.consecutive_fails, health.last_error,
                )
            elif not health.is_healthy:
                logger.debug("Health probe failed: id=%s error=%s", member_id, health.last_error)

        if latched and self.config.reassign_on_unhealthy:
            self._reassign_pending(member_id)

    def _reassign_pending(self, member_id: str) -> None:
        for task in self._manager.list_tasks(status=TaskStatus.ASSIGNED):
            if task.assigned_member != member_id:
                continue
            try:
                self._manager.reassign_task(task.id, reason=f"member {member_id} unhealthy")
            except RoutingError as e:
                logger.warning("Could not reassign task: id=%s reason=%s", task.id, e.message)

    # ── Queries ─────────────────────────────────────────────────────────

    def get_member_health(self, member_id: str) -> MemberHealth:
        with self._lock:
            health = self._health.get(member_id)
            if health is None:
                raise NotFoundError("member health", member_id)
            return replace(health)

    def get_all_health_status(self) -> Dict[str, MemberHealth]:
        with self._lock:
            return {member_id: replace(h) for member_id, h in self._health.items()}

    def get_healthy_members(self) -> List[str]:
        with self._lock:
            return [member_id for member_id, h in self._health.items() if h.is_healthy]

    def get_unhealthy_members(self) -> List[str]:
        with self._lock:
            return [member_id for member_id, h in self._health.items() if not h.is_healthy]
