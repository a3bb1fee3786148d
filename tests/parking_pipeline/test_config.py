"""Tests for pipeline configuration loading."""

import pytest

from parking_pipeline.common.exceptions import ConfigurationError
from parking_pipeline.config import (
    CONFIG_PATH_ENV,
    DEFAULT_TARGET_DISTRICTS,
    DirectoryConfig,
    KafkaConfig,
    PipelineConfig,
    UpstreamConfig,
    WorkerConfig,
    load_yaml,
)

ENV_VARS = [
    "KAFKA_BOOTSTRAP_SERVERS",
    "KAFKA_BROKERS",
    "KAFKA_SECURITY_PROTOCOL",
    "KAFKA_TOPIC",
    "KAFKA_CLIENT_ID",
    "API_KEY",
    "MAX_BATCH_SIZE",
    "UPSTREAM_SERVICE",
    "POD_NAME",
    "POD_NAMESPACE",
    "ROLE_LABEL",
    "TARGET_DISTRICTS",
    "CYCLE_INTERVAL_SECONDS",
    "PUBLISH_EMPTY_RESULTS",
    "HEALTH_PORT",
    "METRICS_PORT",
    CONFIG_PATH_ENV,
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Start every test from an empty configuration environment."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def required_env(monkeypatch):
    monkeypatch.setenv("KAFKA_BOOTSTRAP_SERVERS", "kafka:9092")
    monkeypatch.setenv("API_KEY", "secret-key")


class TestKafkaConfig:
    """Tests for KafkaConfig.from_env()."""

    def test_defaults(self, monkeypatch):
        monkeypatch.setenv("KAFKA_BOOTSTRAP_SERVERS", "kafka-0:9092, kafka-1:9092")

        config = KafkaConfig.from_env()

        assert config.bootstrap_server_list == ["kafka-0:9092", "kafka-1:9092"]
        assert config.security_protocol == "PLAINTEXT"
        assert config.client_id == "parking-api-client"
        assert config.topic == "parking-topic"
        assert config.acks == "all"

    def test_brokers_alias(self, monkeypatch):
        monkeypatch.setenv("KAFKA_BROKERS", "legacy:9092")

        assert KafkaConfig.from_env().bootstrap_servers == "legacy:9092"

    def test_brokers_alias_overrides_yaml(self, monkeypatch):
        monkeypatch.setenv("KAFKA_BROKERS", "legacy:9092")

        config = KafkaConfig.from_env({"bootstrap_servers": "yaml:9092"})

        assert config.bootstrap_servers == "legacy:9092"

    def test_bootstrap_servers_preferred_over_brokers_alias(self, monkeypatch):
        monkeypatch.setenv("KAFKA_BOOTSTRAP_SERVERS", "primary:9092")
        monkeypatch.setenv("KAFKA_BROKERS", "legacy:9092")

        assert KafkaConfig.from_env().bootstrap_servers == "primary:9092"

    def test_missing_bootstrap_servers(self):
        with pytest.raises(ConfigurationError):
            KafkaConfig.from_env()

    def test_env_overrides_yaml(self, monkeypatch):
        monkeypatch.setenv("KAFKA_TOPIC", "from-env")

        config = KafkaConfig.from_env({"bootstrap_servers": "yaml:9092", "topic": "from-yaml"})

        assert config.bootstrap_servers == "yaml:9092"
        assert config.topic == "from-env"


class TestUpstreamConfig:
    """Tests for UpstreamConfig.from_env()."""

    def test_api_key_required(self):
        with pytest.raises(ConfigurationError, match="API_KEY"):
            UpstreamConfig.from_env()

    def test_defaults(self, monkeypatch):
        monkeypatch.setenv("API_KEY", "k")

        config = UpstreamConfig.from_env()

        assert config.base_url == "http://openapi.seoul.go.kr:8088"
        assert config.service == "GetParkingInfo"
        assert config.max_batch_size == 1000
        assert config.page_max_attempts == 1

    @pytest.mark.parametrize("value", ["abc", "0", "-5"])
    def test_invalid_batch_size(self, monkeypatch, value):
        monkeypatch.setenv("API_KEY", "k")
        monkeypatch.setenv("MAX_BATCH_SIZE", value)

        with pytest.raises(ConfigurationError, match="MAX_BATCH_SIZE"):
            UpstreamConfig.from_env()

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            UpstreamConfig.from_env()


class TestWorkerConfig:
    """Tests for WorkerConfig.from_env()."""

    def test_defaults(self, monkeypatch):
        monkeypatch.setenv("POD_NAME", "parking-api-2")

        config = WorkerConfig.from_env()

        assert config.pod_name == "parking-api-2"
        assert config.target_districts == DEFAULT_TARGET_DISTRICTS
        assert config.filter_field == "ADDR"
        assert config.cycle_interval_seconds == 0
        assert config.publish_empty_results is True
        assert config.health_port == 3000
        assert config.metrics_port == 8000

    def test_pod_name_falls_back_to_hostname(self, monkeypatch):
        monkeypatch.setattr("parking_pipeline.config.socket.gethostname", lambda: "host-7")

        assert WorkerConfig.from_env().pod_name == "host-7"

    def test_comma_separated_districts(self, monkeypatch):
        monkeypatch.setenv("TARGET_DISTRICTS", "중구, 용산구,,")

        assert WorkerConfig.from_env().target_districts == ["중구", "용산구"]

    @pytest.mark.parametrize("value,expected", [("true", True), ("1", True), ("no", False)])
    def test_bool_parsing(self, monkeypatch, value, expected):
        monkeypatch.setenv("PUBLISH_EMPTY_RESULTS", value)

        assert WorkerConfig.from_env().publish_empty_results is expected

    def test_invalid_bool(self, monkeypatch):
        monkeypatch.setenv("PUBLISH_EMPTY_RESULTS", "maybe")

        with pytest.raises(ConfigurationError):
            WorkerConfig.from_env()


class TestDirectoryConfig:
    """Tests for DirectoryConfig.from_env()."""

    def test_defaults_are_in_cluster(self):
        config = DirectoryConfig.from_env()

        assert config.api_url == "https://kubernetes.default.svc"
        assert config.role_label == "parking-api"
        assert config.role_label_key == "app"
        assert config.token_path.endswith("serviceaccount/token")

    def test_namespace_from_env(self, monkeypatch):
        monkeypatch.setenv("POD_NAMESPACE", "ingest")

        assert DirectoryConfig.from_env().namespace == "ingest"


class TestPipelineConfig:
    """Tests for PipelineConfig.load_config()."""

    def test_from_env_only(self, required_env):
        config = PipelineConfig.load_config()

        assert config.kafka.bootstrap_servers == "kafka:9092"
        assert config.upstream.api_key == "secret-key"

    def test_from_yaml(self, tmp_path, monkeypatch):
        monkeypatch.setenv("API_KEY", "secret-key")
        path = tmp_path / "parking.yaml"
        path.write_text(
            "kafka:\n"
            "  bootstrap_servers: yaml-kafka:9092\n"
            "upstream:\n"
            "  max_batch_size: 500\n"
            "worker:\n"
            "  pod_name: parking-api-4\n"
            "  target_districts: [중구, 용산구]\n"
            "  cycle_interval_seconds: 600\n",
            encoding="utf-8",
        )

        config = PipelineConfig.load_config(path)

        assert config.kafka.bootstrap_servers == "yaml-kafka:9092"
        assert config.upstream.max_batch_size == 500
        assert config.worker.pod_name == "parking-api-4"
        assert config.worker.target_districts == ["중구", "용산구"]
        assert config.worker.cycle_interval_seconds == 600

    def test_path_from_env_var(self, tmp_path, monkeypatch, required_env):
        path = tmp_path / "parking.yaml"
        path.write_text("worker:\n  health_port: 3100\n")
        monkeypatch.setenv(CONFIG_PATH_ENV, str(path))

        assert PipelineConfig.load_config().worker.health_port == 3100

    def test_missing_file(self, tmp_path, required_env):
        with pytest.raises(ConfigurationError, match="not found"):
            PipelineConfig.load_config(tmp_path / "absent.yaml")

    def test_non_mapping_section(self, tmp_path, required_env):
        path = tmp_path / "bad.yaml"
        path.write_text("worker: [1, 2]\n")

        with pytest.raises(ConfigurationError, match="worker"):
            PipelineConfig.load_config(path)


class TestLoadYaml:
    """Tests for load_yaml()."""

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")

        assert load_yaml(path) == {}

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("kafka: [unclosed\n")

        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_yaml(path)

    def test_top_level_must_be_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ConfigurationError, match="mapping"):
            load_yaml(path)
