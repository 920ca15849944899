"""
Analytics Configuration
========================
Centralized configuration with environment variable overrides.
All retry budgets, TTLs, breaker thresholds and LRS instances live here.

LRS instances are read from (first match wins):
  1. LRS_INSTANCES          → JSON array of {id, name, endpoint, timeoutMs, auth}
  2. LRS_<ID>_ENDPOINT ...  → one block of prefixed variables per instance
  3. LRS_DOMAIN / LRS_USER  → legacy single instance with id "default"
"""

import json
import logging
import os
import re
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_INSTANCE_ID = "default"
DEFAULT_LRS_TIMEOUT_MS = 10000

_INSTANCE_ID_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
_PREFIXED_ENDPOINT_RE = re.compile(r"^LRS_([A-Z0-9_]+)_ENDPOINT$")


# ── LRS Instances ─────────────────────────────────────────────────

@dataclass(frozen=True)
class LRSAuth:
    """Credentials for one LRS. `type` is basic | bearer | custom."""
    type: str
    username: Optional[str] = None
    password: Optional[str] = None
    token: Optional[str] = None
    headers: Tuple[Tuple[str, str], ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], instance_id: str) -> "LRSAuth":
        auth_type = data.get("type")
        if auth_type == "basic":
            # key/secret is accepted as an alias of username/password
            username = data.get("username") or data.get("key")
            password = data.get("password") if "password" in data else data.get("secret")
            if not username or password is None:
                raise ConfigurationError(
                    f"LRS instance '{instance_id}': basic auth needs username/password or key/secret"
                )
            return cls(type="basic", username=username, password=password)
        if auth_type == "bearer":
            if not data.get("token"):
                raise ConfigurationError(f"LRS instance '{instance_id}': bearer auth needs a token")
            return cls(type="bearer", token=data["token"])
        if auth_type == "custom":
            headers = data.get("headers")
            if not isinstance(headers, Mapping) or not headers:
                raise ConfigurationError(
                    f"LRS instance '{instance_id}': custom auth needs a headers object"
                )
            return cls(type="custom", headers=tuple((str(k), str(v)) for k, v in headers.items()))
        raise ConfigurationError(
            f"LRS instance '{instance_id}': unsupported auth type {auth_type!r}"
        )

    def redacted(self) -> dict:
        if self.type == "basic":
            return {"type": "basic", "username": self.username, "password": "***"}
        if self.type == "bearer":
            return {"type": "bearer", "token": "***"}
        return {"type": "custom", "headers": {k: "***" for k, _ in self.headers}}


@dataclass(frozen=True)
class LRSInstanceConfig:
    """One configured Learning Record Store (tenant)."""
    id: str
    name: str
    endpoint: str
    auth: LRSAuth
    timeout_ms: int = DEFAULT_LRS_TIMEOUT_MS

    def redacted(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "endpoint": self.endpoint,
            "timeoutMs": self.timeout_ms,
            "auth": self.auth.redacted(),
        }


# ── Service Config ────────────────────────────────────────────────

@dataclass(frozen=True)
class AnalyticsConfig:
    """Tuning knobs for the computation pipeline."""

    # LRS client
    lrs_max_retries: int = 3
    lrs_retry_base_delay_ms: int = 100
    lrs_retry_max_delay_ms: int = 500
    lrs_max_statements: int = 10000
    lrs_instances: Tuple[LRSInstanceConfig, ...] = ()

    # Cache
    redis_url: Optional[str] = None
    redis_max_connections: int = 10
    cache_ttl_s: int = 3600
    cache_ttl_metrics_s: int = 3600
    cache_ttl_results_s: int = 300
    cache_ttl_health_s: int = 60
    stale_data_ttl_s: int = 86400

    # Circuit breaker
    cb_failure_threshold: int = 5
    cb_recovery_timeout_s: float = 30.0
    cb_half_open_max_calls: int = 1

    # Graceful degradation
    graceful_degradation_enabled: bool = True
    cache_fallback_enabled: bool = True
    default_value_on_unavailable: Optional[str] = None

    # Health check
    health_check_interval_s: int = 30
    health_check_timeout_s: float = 5.0

    # Metrics
    metrics_buffer_size: int = 1000

    # Logging
    log_level: str = "INFO"

    @property
    def default_instance_id(self) -> str:
        if not self.lrs_instances:
            return DEFAULT_INSTANCE_ID
        return self.lrs_instances[0].id

    def ttl_for_category(self, category: Optional[str]) -> int:
        return {
            "metrics": self.cache_ttl_metrics_s,
            "results": self.cache_ttl_results_s,
            "health": self.cache_ttl_health_s,
        }.get(category or "", self.cache_ttl_s)


def _as_bool(value: str) -> bool:
    return value.strip().lower() not in ("false", "0", "no", "off")


def _ms_to_s(value: str) -> float:
    return int(value) / 1000


# ── Instance Parsing ──────────────────────────────────────────────

def _validate_instance(data: Mapping[str, Any]) -> LRSInstanceConfig:
    instance_id = data.get("id")
    if not instance_id or not isinstance(instance_id, str):
        raise ConfigurationError("LRS instance is missing an 'id'")
    if not _INSTANCE_ID_RE.match(instance_id):
        raise ConfigurationError(
            f"LRS instance id '{instance_id}' must be lower-kebab-case"
        )
    endpoint = data.get("endpoint")
    if not endpoint or not str(endpoint).startswith(("http://", "https://")):
        raise ConfigurationError(
            f"LRS instance '{instance_id}' needs an http(s) endpoint"
        )
    auth = data.get("auth")
    if not isinstance(auth, Mapping):
        raise ConfigurationError(f"LRS instance '{instance_id}' is missing 'auth'")
    timeout_ms = data.get("timeoutMs", DEFAULT_LRS_TIMEOUT_MS)
    try:
        timeout_ms = int(timeout_ms)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            f"LRS instance '{instance_id}' has an invalid timeoutMs"
        ) from e
    return LRSInstanceConfig(
        id=instance_id,
        name=str(data.get("name") or instance_id),
        endpoint=str(endpoint).rstrip("/"),
        auth=LRSAuth.from_dict(auth, instance_id),
        timeout_ms=timeout_ms,
    )


def parse_instances_json(raw: str) -> Tuple[LRSInstanceConfig, ...]:
    """Parse the LRS_INSTANCES JSON array."""
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Failed to parse LRS_INSTANCES JSON: {e}") from e
    if not isinstance(data, list):
        raise ConfigurationError("LRS_INSTANCES must be a JSON array")
    if not data:
        raise ConfigurationError("At least one LRS instance must be configured in LRS_INSTANCES")

    instances = tuple(_validate_instance(item) for item in data)
    seen = set()
    for inst in instances:
        if inst.id in seen:
            raise ConfigurationError(f"Duplicate LRS instance id '{inst.id}'")
        seen.add(inst.id)
    return instances


def parse_prefixed_instances(env: Mapping[str, str]) -> Tuple[LRSInstanceConfig, ...]:
    """Parse LRS_<ID>_* variable blocks, e.g. LRS_HS_KE_ENDPOINT → instance 'hs-ke'."""
    instances = []
    for key in sorted(env):
        match = _PREFIXED_ENDPOINT_RE.match(key)
        if not match:
            continue
        env_id = match.group(1)
        instance_id = env_id.lower().replace("_", "-")
        prefix = f"LRS_{env_id}_"

        auth_type = env.get(f"{prefix}AUTH_TYPE")
        if not auth_type:
            raise ConfigurationError(f"Missing {prefix}AUTH_TYPE for LRS instance '{instance_id}'")

        if auth_type == "custom":
            headers_raw = env.get(f"{prefix}HEADERS")
            if not headers_raw:
                raise ConfigurationError(f"Missing {prefix}HEADERS for LRS instance '{instance_id}'")
            try:
                auth: Dict[str, Any] = {"type": "custom", "headers": json.loads(headers_raw)}
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"{prefix}HEADERS must be a JSON object") from e
        else:
            auth = {
                "type": auth_type,
                "username": env.get(f"{prefix}USERNAME"),
                "password": env.get(f"{prefix}PASSWORD"),
                "key": env.get(f"{prefix}KEY"),
                "secret": env.get(f"{prefix}SECRET"),
                "token": env.get(f"{prefix}TOKEN"),
            }
            auth = {k: v for k, v in auth.items() if v is not None}

        instances.append(_validate_instance({
            "id": instance_id,
            "name": env.get(f"{prefix}NAME") or instance_id,
            "endpoint": env[key],
            "timeoutMs": env.get(f"{prefix}TIMEOUT_MS") or DEFAULT_LRS_TIMEOUT_MS,
            "auth": auth,
        }))
    return tuple(instances)


def parse_lrs_instances(env: Mapping[str, str]) -> Tuple[LRSInstanceConfig, ...]:
    """Resolve LRS instances from the environment. Empty tuple if none are configured."""
    if env.get("LRS_INSTANCES"):
        return parse_instances_json(env["LRS_INSTANCES"])

    prefixed = parse_prefixed_instances(env)
    if prefixed:
        return prefixed

    if env.get("LRS_DOMAIN") and env.get("LRS_USER"):
        logger.info("Using legacy single-instance LRS configuration")
        return (_validate_instance({
            "id": DEFAULT_INSTANCE_ID,
            "name": "Default LRS",
            "endpoint": env["LRS_DOMAIN"],
            "timeoutMs": env.get("LRS_TIMEOUT") or DEFAULT_LRS_TIMEOUT_MS,
            "auth": {
                "type": "basic",
                "username": env["LRS_USER"],
                "password": env.get("LRS_SECRET", ""),
            },
        }),)
    return ()


def load_config(env: Optional[Mapping[str, str]] = None) -> AnalyticsConfig:
    """Load config with environment variable overrides."""
    env = os.environ if env is None else env
    overrides: Dict[str, Any] = {}
    env_map = {
        "LRS_MAX_RETRIES": ("lrs_max_retries", int),
        "LRS_RETRY_BASE_DELAY_MS": ("lrs_retry_base_delay_ms", int),
        "LRS_RETRY_MAX_DELAY_MS": ("lrs_retry_max_delay_ms", int),
        "LRS_MAX_STATEMENTS": ("lrs_max_statements", int),
        "REDIS_URL": ("redis_url", str),
        "REDIS_POOL_SIZE": ("redis_max_connections", int),
        "REDIS_TTL": ("cache_ttl_s", int),
        "CACHE_TTL_METRICS": ("cache_ttl_metrics_s", int),
        "CACHE_TTL_RESULTS": ("cache_ttl_results_s", int),
        "CACHE_TTL_HEALTH": ("cache_ttl_health_s", int),
        "STALE_DATA_TTL": ("stale_data_ttl_s", int),
        "CIRCUIT_BREAKER_THRESHOLD": ("cb_failure_threshold", int),
        "CIRCUIT_BREAKER_TIMEOUT": ("cb_recovery_timeout_s", _ms_to_s),
        "CIRCUIT_BREAKER_HALF_OPEN_REQUESTS": ("cb_half_open_max_calls", int),
        "GRACEFUL_DEGRADATION_ENABLED": ("graceful_degradation_enabled", _as_bool),
        "CACHE_FALLBACK_ENABLED": ("cache_fallback_enabled", _as_bool),
        "DEFAULT_VALUE_ON_UNAVAILABLE": ("default_value_on_unavailable", str),
        "HEALTH_CHECK_INTERVAL": ("health_check_interval_s", int),
        "HEALTH_CHECK_TIMEOUT": ("health_check_timeout_s", float),
        "METRICS_BUFFER_SIZE": ("metrics_buffer_size", int),
        "LOG_LEVEL": ("log_level", str.upper),
    }
    for env_key, (field_name, cast_fn) in env_map.items():
        val = env.get(env_key)
        if val is not None:
            try:
                overrides[field_name] = cast_fn(val)
            except (ValueError, TypeError):
                logger.warning(f"Ignoring invalid value for {env_key}: {val!r}")

    overrides["lrs_instances"] = parse_lrs_instances(env)
    if overrides["lrs_instances"]:
        logger.info(
            "Loaded LRS instances: "
            + json.dumps([inst.redacted() for inst in overrides["lrs_instances"]])
        )
    else:
        logger.warning("No LRS instance configured, metric computation will be unavailable")
    return AnalyticsConfig(**overrides)
