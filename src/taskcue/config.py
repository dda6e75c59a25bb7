"""YAML configuration for coordinator, workers, store and domains."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from taskcue.domains import DomainConfig, DomainRegistry, PRESETS
from taskcue.retry import RetryPolicy


@dataclass
class CoordinatorConfig:
    coordinator_id: str = "coordinator"
    result_timeout: float = 60.0
    result_ttl: float = 3600.0
    heartbeat_interval: float = 5.0


@dataclass
class RetryConfig:
    max_retries: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=int(self.max_retries),
            base_delay=float(self.base_delay),
            multiplier=float(self.multiplier),
            max_delay=float(self.max_delay),
        )


@dataclass
class StoreConfig:
    path: str = ":memory:"


@dataclass
class WorkerSpec:
    """``count`` workers named ``{id}-1 .. {id}-N`` (or just ``id`` when count is 1)."""

    id: str = "worker"
    role: str | None = None
    domain: str | None = None
    skills: list[str] = field(default_factory=list)
    count: int = 1

    def worker_ids(self) -> list[str]:
        if self.count <= 1:
            return [self.id]
        return [f"{self.id}-{i}" for i in range(1, self.count + 1)]


@dataclass
class TaskcueConfig:
    coordinator: CoordinatorConfig = field(default_factory=CoordinatorConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    workers: list[WorkerSpec] = field(default_factory=list)
    domains: list[DomainConfig] = field(default_factory=list)
    routing_domain: str | None = None

    def domain_registry(self) -> DomainRegistry:
        """Built-in presets plus the domains defined in the file."""
        return DomainRegistry([*PRESETS.values(), *self.domains])


def load_config(path: str | Path | None = None) -> TaskcueConfig:
    """
    Load configuration from a YAML file.

    A missing file, or no path at all, gives the defaults. Unknown keys
    are ignored.

    Example file:
        coordinator:
          result_timeout: 30
        retry:
          max_retries: 5
        store:
          path: taskcue.db
        workers:
          - id: dev
            role: developer
            domain: development
            count: 2
    """
    raw: Any = {}
    if path is not None:
        p = Path(path)
        raw = yaml.safe_load(p.read_text(encoding="utf-8")) if p.exists() else {}
    if not isinstance(raw, dict):
        raw = {}

    coordinator_raw = _section(raw, "coordinator")
    retry_raw = _section(raw, "retry")
    store_raw = _section(raw, "store")

    workers: list[WorkerSpec] = []
    raw_workers = raw.get("workers", [])
    if isinstance(raw_workers, list):
        for item in raw_workers:
            if isinstance(item, dict) and "id" in item:
                workers.append(WorkerSpec(**_pick(item, WorkerSpec)))

    domains: list[DomainConfig] = []
    raw_domains = raw.get("domains", [])
    if isinstance(raw_domains, list):
        for item in raw_domains:
            if isinstance(item, dict) and "id" in item:
                domains.append(DomainConfig.from_dict(item))

    return TaskcueConfig(
        coordinator=CoordinatorConfig(**_pick(coordinator_raw, CoordinatorConfig)),
        retry=RetryConfig(**_pick(retry_raw, RetryConfig)),
        store=StoreConfig(**_pick(store_raw, StoreConfig)),
        workers=workers,
        domains=domains,
        routing_domain=raw.get("routing_domain"),
    )


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name, {})
    return value if isinstance(value, dict) else {}


def _pick(raw: dict[str, Any], model_type: type[Any]) -> dict[str, Any]:
    allowed = set(model_type.__dataclass_fields__.keys())
    return {k: v for k, v in raw.items() if k in allowed}
