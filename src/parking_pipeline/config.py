"""
Pipeline configuration.

Values come from three layers, later layers winning:
    1. Dataclass defaults
    2. Optional YAML file (--config or PARKING_PIPELINE_CONFIG)
    3. Environment variables

YAML layout (every section and key optional):

    kafka:
      bootstrap_servers: "kafka-0:9092,kafka-1:9092"
      topic: parking-topic
    directory:
      namespace: default
      role_label: parking-api
    upstream:
      base_url: http://openapi.seoul.go.kr:8088
      service: GetParkingInfo
      max_batch_size: 1000
    worker:
      target_districts: [중구, 용산구]
      cycle_interval_seconds: 600
"""

import os
import socket
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from parking_pipeline.common.exceptions import ConfigurationError

CONFIG_PATH_ENV = "PARKING_PIPELINE_CONFIG"

DEFAULT_TARGET_DISTRICTS = [
    "중구",
    "용산구",
    "관악구",
    "서대문구",
    "종로구",
    "구로구",
    "강서구",
]

SERVICE_ACCOUNT_DIR = Path("/var/run/secrets/kubernetes.io/serviceaccount")

_TRUE_VALUES = ("true", "1", "yes", "on")
_FALSE_VALUES = ("false", "0", "no", "off")


# =============================================================================
# Value parsing helpers
# =============================================================================


def _lookup(
    env_name: str,
    section: Mapping[str, Any],
    key: str,
    default: Any,
) -> Any:
    """Environment variable, else YAML value, else default."""
    env_value = os.getenv(env_name)
    if env_value is not None and env_value != "":
        return env_value
    if key in section and section[key] is not None:
        return section[key]
    return default


def _as_int(value: Any, name: str, minimum: Optional[int] = None) -> int:
    try:
        result = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from e
    if minimum is not None and result < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {result}")
    return result


def _as_float(value: Any, name: str, minimum: Optional[float] = None) -> float:
    try:
        result = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from e
    if minimum is not None and result < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {result}")
    return result


def _as_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {value!r}")


def _as_list(value: Any) -> List[str]:
    """Accept a YAML list or a comma-separated string."""
    if isinstance(value, (list, tuple)):
        items = [str(v) for v in value]
    else:
        items = str(value).split(",")
    return [item.strip() for item in items if item.strip()]


def _section(data: Mapping[str, Any], name: str) -> Dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"Config section '{name}' must be a mapping")
    return section


# =============================================================================
# Sections
# =============================================================================


@dataclass
class KafkaConfig:
    """Kafka connection and producer configuration.

    Load from environment using KafkaConfig.from_env().
    """

    # Connection
    bootstrap_servers: str
    security_protocol: str = "PLAINTEXT"
    sasl_mechanism: str = "PLAIN"

    # SASL_PLAIN credentials
    sasl_plain_username: str = ""
    sasl_plain_password: str = ""

    # Producer defaults
    client_id: str = "parking-api-client"
    acks: str = "all"
    request_timeout_ms: int = 30000

    # Topic receiving one message per completed cycle
    topic: str = "parking-topic"

    @classmethod
    def from_env(cls, section: Optional[Mapping[str, Any]] = None) -> "KafkaConfig":
        """Load configuration from environment variables (and YAML section).

        Required:
            KAFKA_BOOTSTRAP_SERVERS (or KAFKA_BROKERS): Comma-separated broker list

        Optional (with defaults):
            KAFKA_SECURITY_PROTOCOL: PLAINTEXT
            KAFKA_SASL_MECHANISM: PLAIN
            KAFKA_SASL_PLAIN_USERNAME / KAFKA_SASL_PLAIN_PASSWORD
            KAFKA_CLIENT_ID: parking-api-client
            KAFKA_ACKS: all
            KAFKA_REQUEST_TIMEOUT_MS: 30000
            KAFKA_TOPIC: parking-topic

        Raises:
            ConfigurationError: If required values are missing
        """
        section = section or {}
        # Either environment name beats the YAML file
        bootstrap_servers = os.getenv("KAFKA_BOOTSTRAP_SERVERS") or os.getenv("KAFKA_BROKERS")
        if not bootstrap_servers:
            bootstrap_servers = section.get("bootstrap_servers")
        if not bootstrap_servers:
            raise ConfigurationError(
                "KAFKA_BOOTSTRAP_SERVERS environment variable is required"
            )

        return cls(
            bootstrap_servers=str(bootstrap_servers),
            security_protocol=str(
                _lookup("KAFKA_SECURITY_PROTOCOL", section, "security_protocol", "PLAINTEXT")
            ),
            sasl_mechanism=str(
                _lookup("KAFKA_SASL_MECHANISM", section, "sasl_mechanism", "PLAIN")
            ),
            sasl_plain_username=str(
                _lookup("KAFKA_SASL_PLAIN_USERNAME", section, "sasl_plain_username", "")
            ),
            sasl_plain_password=str(
                _lookup("KAFKA_SASL_PLAIN_PASSWORD", section, "sasl_plain_password", "")
            ),
            client_id=str(
                _lookup("KAFKA_CLIENT_ID", section, "client_id", "parking-api-client")
            ),
            acks=str(_lookup("KAFKA_ACKS", section, "acks", "all")),
            request_timeout_ms=_as_int(
                _lookup("KAFKA_REQUEST_TIMEOUT_MS", section, "request_timeout_ms", 30000),
                "KAFKA_REQUEST_TIMEOUT_MS",
                minimum=1,
            ),
            topic=str(_lookup("KAFKA_TOPIC", section, "topic", "parking-topic")),
        )

    @property
    def bootstrap_server_list(self) -> List[str]:
        return _as_list(self.bootstrap_servers)


@dataclass
class DirectoryConfig:
    """Orchestration API (Kubernetes) access for peer discovery."""

    api_url: str = "https://kubernetes.default.svc"
    namespace: str = "default"
    role_label: str = "parking-api"
    role_label_key: str = "app"
    token_path: str = str(SERVICE_ACCOUNT_DIR / "token")
    ca_cert_path: str = str(SERVICE_ACCOUNT_DIR / "ca.crt")
    timeout_seconds: float = 10.0

    @classmethod
    def from_env(cls, section: Optional[Mapping[str, Any]] = None) -> "DirectoryConfig":
        """Load configuration from environment variables (and YAML section).

        Optional (with defaults):
            K8S_API_URL: https://kubernetes.default.svc
            POD_NAMESPACE: default
            ROLE_LABEL: parking-api
            ROLE_LABEL_KEY: app
            K8S_TOKEN_PATH / K8S_CA_CERT_PATH: mounted service account files
            K8S_TIMEOUT_SECONDS: 10
        """
        section = section or {}
        defaults = cls()
        return cls(
            api_url=str(_lookup("K8S_API_URL", section, "api_url", defaults.api_url)),
            namespace=str(
                _lookup("POD_NAMESPACE", section, "namespace", defaults.namespace)
            ),
            role_label=str(
                _lookup("ROLE_LABEL", section, "role_label", defaults.role_label)
            ),
            role_label_key=str(
                _lookup("ROLE_LABEL_KEY", section, "role_label_key", defaults.role_label_key)
            ),
            token_path=str(
                _lookup("K8S_TOKEN_PATH", section, "token_path", defaults.token_path)
            ),
            ca_cert_path=str(
                _lookup("K8S_CA_CERT_PATH", section, "ca_cert_path", defaults.ca_cert_path)
            ),
            timeout_seconds=_as_float(
                _lookup("K8S_TIMEOUT_SECONDS", section, "timeout_seconds", defaults.timeout_seconds),
                "K8S_TIMEOUT_SECONDS",
                minimum=0,
            ),
        )


@dataclass
class UpstreamConfig:
    """Upstream paginated data API (Seoul Open Data)."""

    api_key: str
    base_url: str = "http://openapi.seoul.go.kr:8088"
    service: str = "GetParkingInfo"
    max_batch_size: int = 1000
    timeout_seconds: float = 30.0

    # Per-page retry; 1 attempt means a failed page fails the cycle at once
    page_max_attempts: int = 1
    page_backoff_seconds: float = 1.0

    @classmethod
    def from_env(cls, section: Optional[Mapping[str, Any]] = None) -> "UpstreamConfig":
        """Load configuration from environment variables (and YAML section).

        Required:
            API_KEY: Open API authentication key

        Optional (with defaults):
            UPSTREAM_BASE_URL: http://openapi.seoul.go.kr:8088
            UPSTREAM_SERVICE: GetParkingInfo
            MAX_BATCH_SIZE: 1000 (upstream ceiling per request)
            UPSTREAM_TIMEOUT_SECONDS: 30
            UPSTREAM_PAGE_MAX_ATTEMPTS: 1
            UPSTREAM_PAGE_BACKOFF_SECONDS: 1.0

        Raises:
            ConfigurationError: If API_KEY is missing or a number is invalid
        """
        section = section or {}
        api_key = _lookup("API_KEY", section, "api_key", None)
        if not api_key:
            raise ConfigurationError("API_KEY environment variable is required")

        return cls(
            api_key=str(api_key),
            base_url=str(
                _lookup("UPSTREAM_BASE_URL", section, "base_url", "http://openapi.seoul.go.kr:8088")
            ),
            service=str(_lookup("UPSTREAM_SERVICE", section, "service", "GetParkingInfo")),
            max_batch_size=_as_int(
                _lookup("MAX_BATCH_SIZE", section, "max_batch_size", 1000),
                "MAX_BATCH_SIZE",
                minimum=1,
            ),
            timeout_seconds=_as_float(
                _lookup("UPSTREAM_TIMEOUT_SECONDS", section, "timeout_seconds", 30.0),
                "UPSTREAM_TIMEOUT_SECONDS",
                minimum=0,
            ),
            page_max_attempts=_as_int(
                _lookup("UPSTREAM_PAGE_MAX_ATTEMPTS", section, "page_max_attempts", 1),
                "UPSTREAM_PAGE_MAX_ATTEMPTS",
                minimum=1,
            ),
            page_backoff_seconds=_as_float(
                _lookup("UPSTREAM_PAGE_BACKOFF_SECONDS", section, "page_backoff_seconds", 1.0),
                "UPSTREAM_PAGE_BACKOFF_SECONDS",
                minimum=0,
            ),
        )


@dataclass
class WorkerConfig:
    """Per-process worker behaviour."""

    pod_name: str
    target_districts: List[str] = field(
        default_factory=lambda: list(DEFAULT_TARGET_DISTRICTS)
    )
    filter_field: str = "ADDR"

    # 0 = run a single cycle and exit
    cycle_interval_seconds: float = 0.0

    # 0 = re-query the upstream total every cycle
    total_count_cache_seconds: float = 0.0

    publish_empty_results: bool = True

    health_port: int = 3000
    metrics_port: int = 8000

    @classmethod
    def from_env(cls, section: Optional[Mapping[str, Any]] = None) -> "WorkerConfig":
        """Load configuration from environment variables (and YAML section).

        Optional (with defaults):
            POD_NAME: host name
            TARGET_DISTRICTS: comma-separated district names
            FILTER_FIELD: ADDR
            CYCLE_INTERVAL_SECONDS: 0 (single cycle)
            TOTAL_COUNT_CACHE_SECONDS: 0 (no caching)
            PUBLISH_EMPTY_RESULTS: true
            HEALTH_PORT: 3000 (0 disables)
            METRICS_PORT: 8000 (0 disables)
        """
        section = section or {}
        return cls(
            pod_name=str(
                _lookup("POD_NAME", section, "pod_name", None) or socket.gethostname()
            ),
            target_districts=_as_list(
                _lookup("TARGET_DISTRICTS", section, "target_districts", DEFAULT_TARGET_DISTRICTS)
            ),
            filter_field=str(_lookup("FILTER_FIELD", section, "filter_field", "ADDR")),
            cycle_interval_seconds=_as_float(
                _lookup("CYCLE_INTERVAL_SECONDS", section, "cycle_interval_seconds", 0),
                "CYCLE_INTERVAL_SECONDS",
                minimum=0,
            ),
            total_count_cache_seconds=_as_float(
                _lookup("TOTAL_COUNT_CACHE_SECONDS", section, "total_count_cache_seconds", 0),
                "TOTAL_COUNT_CACHE_SECONDS",
                minimum=0,
            ),
            publish_empty_results=_as_bool(
                _lookup("PUBLISH_EMPTY_RESULTS", section, "publish_empty_results", True),
                "PUBLISH_EMPTY_RESULTS",
            ),
            health_port=_as_int(
                _lookup("HEALTH_PORT", section, "health_port", 3000),
                "HEALTH_PORT",
                minimum=0,
            ),
            metrics_port=_as_int(
                _lookup("METRICS_PORT", section, "metrics_port", 8000),
                "METRICS_PORT",
                minimum=0,
            ),
        )


# =============================================================================
# Top-level configuration
# =============================================================================


@dataclass
class PipelineConfig:
    """Complete worker configuration."""

    kafka: KafkaConfig
    directory: DirectoryConfig
    upstream: UpstreamConfig
    worker: WorkerConfig

    @classmethod
    def load_config(cls, config_path: Optional[Path] = None) -> "PipelineConfig":
        """Load configuration from YAML (if any) overlaid with environment.

        Args:
            config_path: YAML file path; falls back to PARKING_PIPELINE_CONFIG.
                A missing file is an error only when a path was given.

        Raises:
            ConfigurationError: On unreadable YAML or invalid/missing values
        """
        if config_path is None and os.getenv(CONFIG_PATH_ENV):
            config_path = Path(os.environ[CONFIG_PATH_ENV])

        data: Dict[str, Any] = {}
        if config_path is not None:
            data = load_yaml(config_path)

        return cls(
            kafka=KafkaConfig.from_env(_section(data, "kafka")),
            directory=DirectoryConfig.from_env(_section(data, "directory")),
            upstream=UpstreamConfig.from_env(_section(data, "upstream")),
            worker=WorkerConfig.from_env(_section(data, "worker")),
        )


def load_yaml(path: Path) -> Dict[str, Any]:
    """Read a YAML mapping from disk."""
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    return data
