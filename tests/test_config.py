import pytest

from infra_graph.cli import load_provider
from infra_graph.config import DEFAULT_STATE_PATH, RunConfig
from infra_graph.errors import ConfigurationError
from infra_graph.provider import LocalProvider

ENV_KEYS = (
    "INFRA_GRAPH_CONCURRENCY",
    "INFRA_GRAPH_STATE_PATH",
    "INFRA_GRAPH_REPORT_PATH",
    "AWS_REGION",
    "AWS_PROFILE",
)


@pytest.fixture
def clean_env(monkeypatch):
    # setenv first so values loaded from a .env file are removed again on teardown
    for key in ENV_KEYS:
        monkeypatch.setenv(key, "")
        monkeypatch.delenv(key)
    return monkeypatch


def test_defaults_without_environment(clean_env, tmp_path):
    config = RunConfig.from_env(str(tmp_path / "absent.env"))

    assert config.state_path == DEFAULT_STATE_PATH
    assert config.concurrency_limit == 4
    assert config.region == "us-east-1"
    assert config.profile is None


def test_environment_overrides_defaults(clean_env, tmp_path):
    clean_env.setenv("INFRA_GRAPH_CONCURRENCY", "8")
    clean_env.setenv("AWS_REGION", "eu-west-1")
    clean_env.setenv("AWS_PROFILE", "ops")

    config = RunConfig.from_env(str(tmp_path / "absent.env"))

    assert config.concurrency_limit == 8
    assert config.region == "eu-west-1"
    assert config.profile == "ops"


def test_env_file_is_loaded(clean_env, tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "INFRA_GRAPH_CONCURRENCY=7\nINFRA_GRAPH_STATE_PATH=custom/state.json\n", encoding="utf-8"
    )

    config = RunConfig.from_env(str(env_file))

    assert config.concurrency_limit == 7
    assert config.state_path == "custom/state.json"


@pytest.mark.parametrize("raw", ["many", "0", "-2"])
def test_invalid_concurrency_is_rejected(clean_env, tmp_path, raw):
    clean_env.setenv("INFRA_GRAPH_CONCURRENCY", raw)

    with pytest.raises(ConfigurationError):
        RunConfig.from_env(str(tmp_path / "absent.env"))


def test_overrides_skip_missing_values():
    config = RunConfig(concurrency_limit=2)

    updated = config.with_overrides(concurrency_limit=None, state_path="other.json")

    assert updated.concurrency_limit == 2
    assert updated.state_path == "other.json"
    with pytest.raises(ConfigurationError):
        config.with_overrides(concurrency_limit=0)


def test_provider_loading():
    config = RunConfig(region="eu-central-1")

    assert isinstance(load_provider(config), LocalProvider)
    assert load_provider(config).region == "eu-central-1"
    with pytest.raises(ConfigurationError):
        load_provider(config, "no_colon_here")
    with pytest.raises(ConfigurationError):
        load_provider(config, "infra_graph.provider:MissingFactory")
