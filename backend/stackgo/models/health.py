"""
Health model: status vocabulary, operation modes, and point-in-time snapshots.

A HealthSnapshot folds three signal groups into one overall status:

- self: per-service container health of the stack
- bus: optional message-transport health with per-endpoint pings
- infra: optional database, disk and external-service checks

The overall status is the worst of the signals that are present. Missing bus
or infra data is neutral.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID


class HealthStatus(str, Enum):
    """Health classification of a stack or one of its signals."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]

    @property
    def is_operational(self) -> bool:
        return self in (HealthStatus.HEALTHY, HealthStatus.DEGRADED)

    @property
    def requires_attention(self) -> bool:
        return self in (HealthStatus.DEGRADED, HealthStatus.UNHEALTHY)

    def combine_with(self, other: "HealthStatus") -> "HealthStatus":
        """Return the worse of the two statuses."""
        return self if self.severity >= other.severity else other

    @classmethod
    def aggregate(cls, statuses: Iterable["HealthStatus"]) -> "HealthStatus":
        """Worst status of the collection; Unknown when empty."""
        result: Optional[HealthStatus] = None
        for status in statuses:
            result = status if result is None else result.combine_with(status)
        return result if result is not None else cls.UNKNOWN

    @classmethod
    def from_name(cls, name: str) -> "HealthStatus":
        for status in cls:
            if status.value == (name or "").strip().lower():
                return status
        raise ValueError(f"Unknown health status: {name}")


_SEVERITY = {
    HealthStatus.HEALTHY: 0,
    HealthStatus.DEGRADED: 1,
    HealthStatus.UNHEALTHY: 2,
    HealthStatus.UNKNOWN: 3,
}


class OperationMode(str, Enum):
    """Declared runtime posture of a running stack."""
    NORMAL = "normal"
    MIGRATING = "migrating"
    MAINTENANCE = "maintenance"
    STOPPED = "stopped"
    FAILED = "failed"

    @property
    def is_available(self) -> bool:
        return self == OperationMode.NORMAL

    @property
    def expects_degraded_health(self) -> bool:
        return self in (OperationMode.MAINTENANCE, OperationMode.MIGRATING)

    @property
    def minimum_health_status(self) -> HealthStatus:
        """Best overall status a stack can reach in this mode."""
        return _MINIMUM_HEALTH[self]

    def valid_transitions(self) -> List["OperationMode"]:
        return list(_MODE_TRANSITIONS[self])

    def can_transition_to(self, target: "OperationMode") -> bool:
        return target in _MODE_TRANSITIONS[self]

    @classmethod
    def from_name(cls, name: str) -> "OperationMode":
        for mode in cls:
            if mode.value == (name or "").strip().lower():
                return mode
        valid = ", ".join(m.value for m in cls)
        raise ValueError(f"Invalid operation mode '{name}'. Valid modes: {valid}")


_MINIMUM_HEALTH = {
    OperationMode.NORMAL: HealthStatus.HEALTHY,
    OperationMode.MIGRATING: HealthStatus.DEGRADED,
    OperationMode.MAINTENANCE: HealthStatus.DEGRADED,
    OperationMode.STOPPED: HealthStatus.UNKNOWN,
    OperationMode.FAILED: HealthStatus.UNHEALTHY,
}

_MODE_TRANSITIONS = {
    OperationMode.NORMAL: (OperationMode.MAINTENANCE, OperationMode.MIGRATING),
    OperationMode.MAINTENANCE: (OperationMode.NORMAL,),
    OperationMode.MIGRATING: (OperationMode.NORMAL, OperationMode.FAILED),
    OperationMode.FAILED: (OperationMode.NORMAL, OperationMode.MAINTENANCE),
    OperationMode.STOPPED: (OperationMode.NORMAL,),
}


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _format_dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# =============================================================================
# Self (service) health
# =============================================================================

@dataclass
class ServiceHealth:
    """Health of one service container."""
    name: str
    status: HealthStatus
    container_id: Optional[str] = None
    container_name: Optional[str] = None
    reason: Optional[str] = None
    restart_count: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "container_id": self.container_id,
            "container_name": self.container_name,
            "reason": self.reason,
            "restart_count": self.restart_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServiceHealth":
        return cls(
            name=data["name"],
            status=HealthStatus(data["status"]),
            container_id=data.get("container_id"),
            container_name=data.get("container_name"),
            reason=data.get("reason"),
            restart_count=data.get("restart_count"),
        )


@dataclass
class SelfHealth:
    """Per-service health of a stack."""
    services: List[ServiceHealth] = field(default_factory=list)

    @property
    def status(self) -> HealthStatus:
        return HealthStatus.aggregate(s.status for s in self.services)

    @property
    def healthy_count(self) -> int:
        return sum(1 for s in self.services if s.status == HealthStatus.HEALTHY)

    @property
    def degraded_count(self) -> int:
        return sum(1 for s in self.services if s.status == HealthStatus.DEGRADED)

    @property
    def unhealthy_count(self) -> int:
        return sum(1 for s in self.services if s.status == HealthStatus.UNHEALTHY)

    @property
    def total_count(self) -> int:
        return len(self.services)

    @classmethod
    def empty(cls) -> "SelfHealth":
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        return {"services": [s.to_dict() for s in self.services]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SelfHealth":
        return cls(services=[ServiceHealth.from_dict(s) for s in data.get("services", [])])


# =============================================================================
# Bus health
# =============================================================================

@dataclass
class BusEndpointHealth:
    """Last health ping of one message endpoint."""
    endpoint_name: str
    status: HealthStatus
    last_ping_utc: Optional[datetime] = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "endpoint_name": self.endpoint_name,
            "status": self.status.value,
            "last_ping_utc": _format_dt(self.last_ping_utc),
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BusEndpointHealth":
        return cls(
            endpoint_name=data["endpoint_name"],
            status=HealthStatus(data["status"]),
            last_ping_utc=_parse_dt(data.get("last_ping_utc")),
            reason=data.get("reason"),
        )


@dataclass
class BusHealth:
    """Health of the message transport used by a stack."""
    status: HealthStatus
    transport_key: Optional[str] = None
    has_critical_error: bool = False
    critical_error_message: Optional[str] = None
    last_health_ping_processed_utc: Optional[datetime] = None
    time_since_last_ping: Optional[timedelta] = None
    unhealthy_after: Optional[timedelta] = None
    endpoints: List[BusEndpointHealth] = field(default_factory=list)

    @classmethod
    def healthy(cls, transport_key: Optional[str] = None) -> "BusHealth":
        return cls(
            status=HealthStatus.HEALTHY,
            transport_key=transport_key,
            last_health_ping_processed_utc=datetime.utcnow(),
            time_since_last_ping=timedelta(0),
        )

    @classmethod
    def unknown(cls) -> "BusHealth":
        return cls(status=HealthStatus.UNKNOWN)

    @classmethod
    def from_pings(
        cls,
        endpoints: List[BusEndpointHealth],
        unhealthy_after: timedelta,
        transport_key: Optional[str] = None,
        critical_error_message: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> "BusHealth":
        """
        Derive transport health from endpoint pings.

        A critical error makes the bus unhealthy. Otherwise the bus is degraded
        once the newest ping is older than `unhealthy_after`, and the endpoint
        statuses are folded in.
        """
        now = now or datetime.utcnow()
        pings = [e.last_ping_utc for e in endpoints if e.last_ping_utc]
        last_ping = max(pings) if pings else None
        since = now - last_ping if last_ping else None

        if critical_error_message:
            status = HealthStatus.UNHEALTHY
        elif since is None:
            status = HealthStatus.UNKNOWN
        else:
            status = HealthStatus.aggregate(e.status for e in endpoints)
            if since > unhealthy_after:
                status = status.combine_with(HealthStatus.DEGRADED)

        return cls(
            status=status,
            transport_key=transport_key,
            has_critical_error=critical_error_message is not None,
            critical_error_message=critical_error_message,
            last_health_ping_processed_utc=last_ping,
            time_since_last_ping=since,
            unhealthy_after=unhealthy_after,
            endpoints=list(endpoints),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "transport_key": self.transport_key,
            "has_critical_error": self.has_critical_error,
            "critical_error_message": self.critical_error_message,
            "last_health_ping_processed_utc": _format_dt(self.last_health_ping_processed_utc),
            "time_since_last_ping": self.time_since_last_ping.total_seconds() if self.time_since_last_ping is not None else None,
            "unhealthy_after": self.unhealthy_after.total_seconds() if self.unhealthy_after is not None else None,
            "endpoints": [e.to_dict() for e in self.endpoints],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BusHealth":
        since = data.get("time_since_last_ping")
        after = data.get("unhealthy_after")
        return cls(
            status=HealthStatus(data["status"]),
            transport_key=data.get("transport_key"),
            has_critical_error=data.get("has_critical_error", False),
            critical_error_message=data.get("critical_error_message"),
            last_health_ping_processed_utc=_parse_dt(data.get("last_health_ping_processed_utc")),
            time_since_last_ping=timedelta(seconds=since) if since is not None else None,
            unhealthy_after=timedelta(seconds=after) if after is not None else None,
            endpoints=[BusEndpointHealth.from_dict(e) for e in data.get("endpoints", [])],
        )


# =============================================================================
# Infrastructure health
# =============================================================================

@dataclass
class DatabaseHealth:
    id: str
    status: HealthStatus
    latency_ms: Optional[float] = None
    error: Optional[str] = None


@dataclass
class DiskHealth:
    mount: str
    status: HealthStatus
    free_percent: Optional[float] = None
    error: Optional[str] = None


@dataclass
class ExternalServiceHealth:
    id: str
    status: HealthStatus
    error: Optional[str] = None
    response_time_ms: Optional[float] = None


@dataclass
class InfraHealth:
    """Health of the infrastructure a stack depends on."""
    databases: List[DatabaseHealth] = field(default_factory=list)
    disks: List[DiskHealth] = field(default_factory=list)
    external_services: List[ExternalServiceHealth] = field(default_factory=list)

    @property
    def status(self) -> HealthStatus:
        return HealthStatus.aggregate(
            [d.status for d in self.databases]
            + [d.status for d in self.disks]
            + [s.status for s in self.external_services]
        )

    def unhealthy_components(self) -> List[str]:
        """Names of the components that are not healthy, prefixed by kind."""
        names = [f"database:{d.id}" for d in self.databases if d.status != HealthStatus.HEALTHY]
        names += [f"disk:{d.mount}" for d in self.disks if d.status != HealthStatus.HEALTHY]
        names += [f"service:{s.id}" for s in self.external_services if s.status != HealthStatus.HEALTHY]
        return names

    def to_dict(self) -> Dict[str, Any]:
        return {
            "databases": [
                {"id": d.id, "status": d.status.value, "latency_ms": d.latency_ms, "error": d.error}
                for d in self.databases
            ],
            "disks": [
                {"mount": d.mount, "status": d.status.value, "free_percent": d.free_percent, "error": d.error}
                for d in self.disks
            ],
            "external_services": [
                {"id": s.id, "status": s.status.value, "error": s.error, "response_time_ms": s.response_time_ms}
                for s in self.external_services
            ],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InfraHealth":
        return cls(
            databases=[
                DatabaseHealth(d["id"], HealthStatus(d["status"]), d.get("latency_ms"), d.get("error"))
                for d in data.get("databases", [])
            ],
            disks=[
                DiskHealth(d["mount"], HealthStatus(d["status"]), d.get("free_percent"), d.get("error"))
                for d in data.get("disks", [])
            ],
            external_services=[
                ExternalServiceHealth(s["id"], HealthStatus(s["status"]), s.get("error"), s.get("response_time_ms"))
                for s in data.get("external_services", [])
            ],
        )


# =============================================================================
# Snapshot
# =============================================================================

@dataclass
class HealthSnapshot:
    """Point-in-time health of one deployment. Append-only history."""
    id: UUID
    environment_id: str
    deployment_id: UUID
    stack_name: str
    operation_mode: OperationMode
    self_health: SelfHealth
    current_version: Optional[str] = None
    target_version: Optional[str] = None
    bus: Optional[BusHealth] = None
    infra: Optional[InfraHealth] = None
    captured_at_utc: datetime = field(default_factory=datetime.utcnow)

    @classmethod
    def capture(
        cls,
        environment_id: str,
        deployment_id: UUID,
        stack_name: str,
        operation_mode: OperationMode,
        self_health: SelfHealth,
        current_version: Optional[str] = None,
        target_version: Optional[str] = None,
        bus: Optional[BusHealth] = None,
        infra: Optional[InfraHealth] = None,
        captured_at_utc: Optional[datetime] = None,
    ) -> "HealthSnapshot":
        return cls(
            id=uuid.uuid4(),
            environment_id=environment_id,
            deployment_id=deployment_id,
            stack_name=stack_name,
            operation_mode=operation_mode,
            self_health=self_health,
            current_version=current_version,
            target_version=target_version,
            bus=bus,
            infra=infra,
            captured_at_utc=captured_at_utc or datetime.utcnow(),
        )

    @property
    def overall(self) -> HealthStatus:
        """Worst component status, never better than the operation mode allows."""
        statuses = [self.self_health.status]
        if self.bus is not None:
            statuses.append(self.bus.status)
        if self.infra is not None:
            statuses.append(self.infra.status)
        return self.operation_mode.minimum_health_status.combine_with(HealthStatus.aggregate(statuses))

    @property
    def is_healthy(self) -> bool:
        return self.overall == HealthStatus.HEALTHY and self.operation_mode == OperationMode.NORMAL

    @property
    def requires_attention(self) -> bool:
        """Degradation expected by the operation mode does not count."""
        if not self.overall.requires_attention:
            return False
        return self.overall.severity > self.operation_mode.minimum_health_status.severity \
            or not self.operation_mode.expects_degraded_health

    def age(self, now: Optional[datetime] = None) -> timedelta:
        return (now or datetime.utcnow()) - self.captured_at_utc

    def is_stale(self, threshold: timedelta, now: Optional[datetime] = None) -> bool:
        return self.age(now) > threshold

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "environment_id": self.environment_id,
            "deployment_id": str(self.deployment_id),
            "stack_name": self.stack_name,
            "operation_mode": self.operation_mode.value,
            "self": self.self_health.to_dict(),
            "current_version": self.current_version,
            "target_version": self.target_version,
            "bus": self.bus.to_dict() if self.bus else None,
            "infra": self.infra.to_dict() if self.infra else None,
            "captured_at_utc": _format_dt(self.captured_at_utc),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HealthSnapshot":
        return cls(
            id=UUID(data["id"]),
            environment_id=data["environment_id"],
            deployment_id=UUID(data["deployment_id"]),
            stack_name=data["stack_name"],
            operation_mode=OperationMode(data["operation_mode"]),
            self_health=SelfHealth.from_dict(data.get("self") or {}),
            current_version=data.get("current_version"),
            target_version=data.get("target_version"),
            bus=BusHealth.from_dict(data["bus"]) if data.get("bus") else None,
            infra=InfraHealth.from_dict(data["infra"]) if data.get("infra") else None,
            captured_at_utc=_parse_dt(data["captured_at_utc"]),
        )


_MODE_MESSAGES = {
    OperationMode.MAINTENANCE: "Stack is in maintenance mode",
    OperationMode.MIGRATING: "Stack is migrating",
    OperationMode.STOPPED: "Stack is stopped",
    OperationMode.FAILED: "Stack is in failed mode",
}


def build_status_message(snapshot: HealthSnapshot) -> str:
    """Human-readable status line for a snapshot. Never blank."""
    total = snapshot.self_health.total_count
    healthy = snapshot.self_health.healthy_count

    mode_message = _MODE_MESSAGES.get(snapshot.operation_mode)
    if mode_message:
        return mode_message

    overall = snapshot.overall
    if overall == HealthStatus.HEALTHY:
        return f"All {total} services healthy"
    if overall == HealthStatus.DEGRADED:
        return f"{total - healthy} of {total} services degraded"
    if overall == HealthStatus.UNHEALTHY:
        return f"{snapshot.self_health.unhealthy_count} of {total} services unhealthy"
    return "Health status unknown"


# =============================================================================
# Summaries
# =============================================================================

@dataclass
class StackHealthSummary:
    """Condensed view of the latest snapshot of one stack."""
    snapshot_id: UUID
    deployment_id: UUID
    stack_name: str
    current_version: Optional[str]
    overall_status: HealthStatus
    operation_mode: OperationMode
    healthy_services: int
    total_services: int
    captured_at_utc: datetime
    status_message: str
    requires_attention: bool

    @classmethod
    def from_snapshot(cls, snapshot: HealthSnapshot) -> "StackHealthSummary":
        return cls(
            snapshot_id=snapshot.id,
            deployment_id=snapshot.deployment_id,
            stack_name=snapshot.stack_name,
            current_version=snapshot.current_version,
            overall_status=snapshot.overall,
            operation_mode=snapshot.operation_mode,
            healthy_services=snapshot.self_health.healthy_count,
            total_services=snapshot.self_health.total_count,
            captured_at_utc=snapshot.captured_at_utc,
            status_message=build_status_message(snapshot),
            requires_attention=snapshot.requires_attention,
        )

    @property
    def service_health_ratio(self) -> str:
        return f"{self.healthy_services}/{self.total_services}"


@dataclass
class EnvironmentHealthSummary:
    """Health roll-up of every active stack in an environment. Derived, never stored."""
    environment_id: str
    stacks: List[StackHealthSummary] = field(default_factory=list)
    created_at_utc: datetime = field(default_factory=datetime.utcnow)

    @classmethod
    def from_snapshots(
        cls,
        environment_id: str,
        snapshots: Iterable[HealthSnapshot],
        removed_deployment_ids: Iterable[UUID] = (),
    ) -> "EnvironmentHealthSummary":
        """
        Build the summary from the latest snapshot per deployment.

        Older snapshots of the same deployment and snapshots of removed
        deployments are ignored.
        """
        removed = set(removed_deployment_ids)
        latest: Dict[UUID, HealthSnapshot] = {}
        for snapshot in snapshots:
            if snapshot.deployment_id in removed:
                continue
            current = latest.get(snapshot.deployment_id)
            if current is None or snapshot.captured_at_utc > current.captured_at_utc:
                latest[snapshot.deployment_id] = snapshot

        ordered = sorted(latest.values(), key=lambda s: s.stack_name.lower())
        return cls(
            environment_id=environment_id,
            stacks=[StackHealthSummary.from_snapshot(s) for s in ordered],
        )

    @classmethod
    def empty(cls, environment_id: str) -> "EnvironmentHealthSummary":
        return cls(environment_id=environment_id)

    def _count(self, status: HealthStatus) -> int:
        return sum(1 for s in self.stacks if s.overall_status == status)

    @property
    def total_stacks(self) -> int:
        return len(self.stacks)

    @property
    def healthy_count(self) -> int:
        return self._count(HealthStatus.HEALTHY)

    @property
    def degraded_count(self) -> int:
        return self._count(HealthStatus.DEGRADED)

    @property
    def unhealthy_count(self) -> int:
        """Stacks that are not known to be operational, unknown ones included."""
        return self._count(HealthStatus.UNHEALTHY) + self._count(HealthStatus.UNKNOWN)

    @property
    def unknown_count(self) -> int:
        return self._count(HealthStatus.UNKNOWN)

    @property
    def overall_status(self) -> HealthStatus:
        if self.total_stacks == 0:
            return HealthStatus.UNKNOWN
        if self._count(HealthStatus.UNHEALTHY):
            return HealthStatus.UNHEALTHY
        if self.degraded_count:
            return HealthStatus.DEGRADED
        if self.unknown_count:
            return HealthStatus.UNKNOWN
        return HealthStatus.HEALTHY

    @property
    def requires_attention(self) -> bool:
        return self._count(HealthStatus.UNHEALTHY) > 0 or self.degraded_count > 0 or any(
            s.requires_attention for s in self.stacks
        )

    @property
    def healthy_percentage(self) -> float:
        return self.healthy_count / self.total_stacks * 100 if self.total_stacks else 0.0

    def status_message(self) -> str:
        total = self.total_stacks
        if total == 0:
            return "No deployments"
        unhealthy = self._count(HealthStatus.UNHEALTHY)
        if unhealthy:
            return f"{unhealthy} of {total} stack(s) unhealthy"
        if self.degraded_count:
            return f"{self.degraded_count} of {total} stack(s) degraded"
        if self.unknown_count:
            return f"{self.unknown_count} of {total} stack(s) with unknown status"
        return f"All {total} stack(s) healthy"

    def stacks_requiring_attention(self) -> List[StackHealthSummary]:
        return [s for s in self.stacks if s.requires_attention]
