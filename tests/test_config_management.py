"""Test suite for configuration loading.

This test suite validates:
- YAML config file loading and validation
- Environment variable resolution and precedence over the config file
- Required settings checks
"""
import pytest
import yaml

from s3secrets_helper.secrets.domains import config_loader
from s3secrets_helper.secrets.domains.config_loader import ConfigError, is_enabled, load_settings


@pytest.fixture
def sample_config_content():
    """Sample valid config content."""
    return {
        "bucket": "file-bucket",
        "prefix": "file-prefix",
        "region": "eu-west-1",
        "credential_helper": "/usr/local/bin/git-credential-s3-secrets",
        "secret_suffixes": ["_API_KEY"],
        "skip_ssh_key_not_found_warning": True,
        "redaction": {
            "min_secret_size": 8,
            "max_chunk_size": 4096,
        },
    }


@pytest.fixture
def temp_config_file(tmp_path, sample_config_content):
    """Fixture to create a temporary config file with valid content."""
    config_file = tmp_path / "s3secrets.yml"
    with open(config_file, 'w') as f:
        yaml.dump(sample_config_content, f)
    return config_file


def write_config(tmp_path, content):
    config_file = tmp_path / "config.yml"
    config_file.write_text(content)
    return str(config_file)


class TestIsEnabled:
    """Test suite for flag parsing."""

    @pytest.mark.parametrize("value", ["true", "TRUE", "True", "1"])
    def test_enabled(self, value):
        assert is_enabled(value)

    @pytest.mark.parametrize("value", [None, "", "0", "false", "yes", "on"])
    def test_disabled(self, value):
        assert not is_enabled(value)


class TestLoadSettingsFromEnvironment:
    """Test suite for settings resolved from environment variables."""

    def test_empty_environment(self):
        settings = load_settings(environ={})
        assert settings.bucket == ""
        assert settings.prefix == ""
        assert settings.redaction.min_secret_size == 6
        assert settings.redaction.max_secret_size == 65536
        assert settings.redaction.max_chunk_size == 1024 * 1024

    def test_all_variables(self):
        settings = load_settings(environ={
            "BUILDKITE_PLUGIN_S3_SECRETS_BUCKET": "my-bucket",
            "BUILDKITE_PLUGIN_S3_SECRETS_BUCKET_PREFIX": "my-prefix",
            "BUILDKITE_PLUGIN_S3_SECRETS_REGION": "ap-southeast-2",
            "BUILDKITE_REPO": "git@github.com:org/repo.git",
            "BUILDKITE_PLUGIN_S3_SECRETS_CREDHELPER": "/bin/helper",
            "BUILDKITE_PLUGIN_S3_SECRETS_ENV_SINK": "/tmp/env",
            "BUILDKITE_PLUGIN_S3_SECRETS_SKIP_SSH_KEY_NOT_FOUND_WARNING": "true",
        })
        assert settings.bucket == "my-bucket"
        assert settings.prefix == "my-prefix"
        assert settings.region == "ap-southeast-2"
        assert settings.repo == "git@github.com:org/repo.git"
        assert settings.credential_helper == "/bin/helper"
        assert settings.env_sink_path == "/tmp/env"
        assert settings.skip_ssh_key_not_found_warning is True

    def test_prefix_falls_back_to_pipeline_slug(self):
        settings = load_settings(environ={"BUILDKITE_PIPELINE_SLUG": "my-pipeline"})
        assert settings.prefix == "my-pipeline"

    def test_prefix_preferred_over_pipeline_slug(self):
        settings = load_settings(environ={
            "BUILDKITE_PIPELINE_SLUG": "my-pipeline",
            "BUILDKITE_PLUGIN_S3_SECRETS_BUCKET_PREFIX": "explicit",
        })
        assert settings.prefix == "explicit"


class TestLoadConfigFile:
    """Test suite for the YAML config file."""

    def test_loads_valid_file(self, temp_config_file):
        settings = load_settings(environ={}, config_path=str(temp_config_file))
        assert settings.bucket == "file-bucket"
        assert settings.prefix == "file-prefix"
        assert settings.region == "eu-west-1"
        assert settings.secret_suffixes == ["_API_KEY"]
        assert settings.skip_ssh_key_not_found_warning is True
        assert settings.redaction.min_secret_size == 8
        assert settings.redaction.max_secret_size == 65536
        assert settings.redaction.max_chunk_size == 4096

    def test_config_path_from_environment(self, temp_config_file):
        settings = load_settings(environ={"BUILDKITE_PLUGIN_S3_SECRETS_CONFIG": str(temp_config_file)})
        assert settings.bucket == "file-bucket"

    def test_environment_overrides_file(self, temp_config_file):
        settings = load_settings(
            environ={
                "BUILDKITE_PLUGIN_S3_SECRETS_BUCKET": "env-bucket",
                "BUILDKITE_PLUGIN_S3_SECRETS_BUCKET_PREFIX": "env-prefix",
            },
            config_path=str(temp_config_file),
        )
        assert settings.bucket == "env-bucket"
        assert settings.prefix == "env-prefix"
        assert settings.region == "eu-west-1"

    def test_file_prefix_beats_pipeline_slug(self, temp_config_file):
        settings = load_settings(environ={"BUILDKITE_PIPELINE_SLUG": "slug"}, config_path=str(temp_config_file))
        assert settings.prefix == "file-prefix"

    def test_empty_file(self, tmp_path):
        settings = load_settings(environ={}, config_path=write_config(tmp_path, ""))
        assert settings.bucket == ""

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="Configuration file not found"):
            load_settings(environ={}, config_path=str(tmp_path / "nope.yml"))

    def test_invalid_yaml(self, tmp_path):
        with pytest.raises(ConfigError, match="Failed to parse YAML"):
            load_settings(environ={}, config_path=write_config(tmp_path, "bucket: [unclosed"))

    def test_top_level_must_be_mapping(self, tmp_path):
        with pytest.raises(ConfigError, match="mapping"):
            load_settings(environ={}, config_path=write_config(tmp_path, "- a\n- b\n"))

    def test_unknown_key(self, tmp_path):
        with pytest.raises(ConfigError, match="Unknown keys.*bukket"):
            load_settings(environ={}, config_path=write_config(tmp_path, "bukket: typo\n"))

    def test_bad_suffixes(self, tmp_path):
        with pytest.raises(ConfigError, match="secret_suffixes"):
            load_settings(environ={}, config_path=write_config(tmp_path, "secret_suffixes: _API_KEY\n"))

    def test_bad_flag(self, tmp_path):
        with pytest.raises(ConfigError, match="skip_ssh_key_not_found_warning"):
            load_settings(environ={}, config_path=write_config(tmp_path, "skip_ssh_key_not_found_warning: maybe\n"))

    @pytest.mark.parametrize("content", [
        "redaction:\n  min_secret_size: 0\n",
        "redaction:\n  max_chunk_size: big\n",
        "redaction:\n  max_secret_size: true\n",
        "redaction:\n  chunk: 5\n",
        "redaction: 5\n",
    ])
    def test_bad_redaction_limits(self, tmp_path, content):
        with pytest.raises(ConfigError, match="redaction"):
            load_settings(environ={}, config_path=write_config(tmp_path, content))

    def test_min_must_be_below_max(self, tmp_path):
        content = "redaction:\n  min_secret_size: 100\n  max_secret_size: 50\n"
        with pytest.raises(ConfigError, match="must be less than"):
            load_settings(environ={}, config_path=write_config(tmp_path, content))

    def test_limits_not_shared_between_loads(self, temp_config_file):
        load_settings(environ={}, config_path=str(temp_config_file))
        assert load_settings(environ={}).redaction.min_secret_size == 6


class TestValidateSettings:
    """Test suite for required settings."""

    def test_valid(self):
        config_loader.validate_settings(config_loader.Settings(prefix="p", credential_helper="/bin/h"))

    def test_prefix_required(self):
        with pytest.raises(ConfigError, match="BUILDKITE_PIPELINE_SLUG"):
            config_loader.validate_settings(config_loader.Settings(credential_helper="/bin/h"))

    def test_credential_helper_required(self):
        with pytest.raises(ConfigError, match="BUILDKITE_PLUGIN_S3_SECRETS_CREDHELPER"):
            config_loader.validate_settings(config_loader.Settings(prefix="p"))
