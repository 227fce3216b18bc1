"""Unit tests for configuration loading and environment overrides."""
import json

import pytest

from facecheck.config import DEFAULT_CONFIG, Config, load_config, save_config
from facecheck.config.env_config import (
    EnvironmentConfigError, load_environment_config, parse_camera_index, parse_flag,
    parse_path, parse_url, read_env_file,
)

ENV_KEYS = (
    "FACECHECK_RECOGNITION_URL", "FACECHECK_CACHE_DIR", "FACECHECK_CAMERA_INDEX",
    "FACECHECK_LOG_LEVEL", "DEBUG_LOGGING",
)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep the host environment out of configuration tests."""
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def env_file(temp_dir):
    return str(temp_dir / ".env")


def write_json(path, data):
    path.write_text(json.dumps(data), encoding="utf-8")
    return str(path)


class TestLoadConfig:
    """Test suite for load_config."""

    def test_missing_file_uses_defaults(self, temp_dir, env_file):
        """Test defaults are used when no file exists."""
        cfg = load_config(str(temp_dir / "missing.json"), env_file=env_file)

        assert cfg.recognition_url == DEFAULT_CONFIG["recognition_url"]
        assert cfg.history_capacity == 10
        assert cfg.cooldown_ms == 2000
        assert cfg.unknown_identities == ["Unknown", "Unknown_done"]

    def test_file_values_override_defaults(self, temp_dir, env_file):
        """Test JSON values are merged over defaults."""
        path = write_json(temp_dir / "config.json", {"recognition_url": "ws://face:9000", "cooldown_ms": 500})

        cfg = load_config(path, env_file=env_file)

        assert cfg.recognition_url == "ws://face:9000"
        assert cfg.cooldown_ms == 500
        assert cfg.dwell_recognized_ms == 1500

    def test_invalid_values_fall_back(self, temp_dir, env_file):
        """Test out-of-range and wrongly typed values are replaced by defaults."""
        path = write_json(temp_dir / "config.json", {
            "history_capacity": 0,
            "camera_fps": "fast",
            "bounding_box_padding": True,
            "capture_rotation": 45,
            "max_reconnect_attempts": -1,
            "unknown_identities": "Unknown",
            "cache_dir": "  ",
            "transmit_target_kb": -5,
        })

        cfg = load_config(path, env_file=env_file)

        assert cfg.history_capacity == DEFAULT_CONFIG["history_capacity"]
        assert cfg.camera_fps == DEFAULT_CONFIG["camera_fps"]
        assert cfg.bounding_box_padding == DEFAULT_CONFIG["bounding_box_padding"]
        assert cfg.capture_rotation == 0
        assert cfg.max_reconnect_attempts is None
        assert cfg.unknown_identities == ["Unknown", "Unknown_done"]
        assert cfg.cache_dir == DEFAULT_CONFIG["cache_dir"]
        assert cfg.transmit_target_kb == 0

    def test_format_alias_and_backoff_ceiling(self, temp_dir, env_file):
        """Test 'jpg' is normalized and the backoff ceiling is never below the interval."""
        path = write_json(temp_dir / "config.json", {
            "output_format": "jpg",
            "reconnect_interval_ms": 5000,
            "max_reconnect_interval_ms": 1000,
        })

        cfg = load_config(path, env_file=env_file)

        assert cfg.output_format == "JPEG"
        assert cfg.max_reconnect_interval_ms == 5000

    def test_malformed_json_uses_defaults(self, temp_dir, env_file):
        """Test a broken file does not prevent startup."""
        path = temp_dir / "config.json"
        path.write_text("{not json", encoding="utf-8")

        cfg = load_config(str(path), env_file=env_file)

        assert cfg.recognition_url == DEFAULT_CONFIG["recognition_url"]

    def test_extra_keys_preserved(self, temp_dir, env_file):
        """Test unknown keys are kept in extra and reachable via get()."""
        path = write_json(temp_dir / "config.json", {"operator": "front-desk"})

        cfg = load_config(path, env_file=env_file)

        assert cfg.extra == {"operator": "front-desk"}
        assert cfg.get("operator") == "front-desk"
        assert cfg.get("cooldown_ms") == 2000
        assert cfg.get("missing", 1) == 1


class TestEnvironmentOverrides:
    """Test suite for environment overrides."""

    def test_process_environment(self, temp_dir, env_file, monkeypatch):
        """Test environment variables override file values."""
        monkeypatch.setenv("FACECHECK_RECOGNITION_URL", "wss://recognizer.example:443/ws")
        monkeypatch.setenv("FACECHECK_CAMERA_INDEX", "2")
        path = write_json(temp_dir / "config.json", {"recognition_url": "ws://file:1"})

        cfg = load_config(path, env_file=env_file)

        assert cfg.recognition_url == "wss://recognizer.example:443/ws"
        assert cfg.camera_index == 2

    def test_env_file_wins_over_process(self, temp_dir, env_file, monkeypatch):
        """Test .env values take precedence over the process environment."""
        monkeypatch.setenv("FACECHECK_LOG_LEVEL", "ERROR")
        (temp_dir / ".env").write_text(
            "# comment\nFACECHECK_LOG_LEVEL='warning'\nFACECHECK_CACHE_DIR=\"cache/previews\"\n",
            encoding="utf-8",
        )

        cfg = load_config(str(temp_dir / "missing.json"), env_file=env_file)

        assert cfg.log_level == "WARNING"
        assert cfg.cache_dir.replace("\\", "/") == "cache/previews"

    def test_debug_logging(self, temp_dir, env_file, monkeypatch):
        """Test DEBUG_LOGGING switches the log level to DEBUG."""
        monkeypatch.setenv("DEBUG_LOGGING", "yes")

        cfg = load_config(str(temp_dir / "missing.json"), env_file=env_file)

        assert cfg.debug is True
        assert cfg.log_level == "DEBUG"

    def test_invalid_environment_ignored(self, temp_dir, env_file, monkeypatch):
        """Test an invalid endpoint URL is rejected and defaults remain."""
        monkeypatch.setenv("FACECHECK_RECOGNITION_URL", "http://not-a-socket")

        with pytest.raises(EnvironmentConfigError):
            load_environment_config(env_file)

        cfg = load_config(str(temp_dir / "missing.json"), env_file=env_file)
        assert cfg.recognition_url == DEFAULT_CONFIG["recognition_url"]

    def test_read_env_file_missing(self, temp_dir):
        """Test a missing .env file yields nothing."""
        assert read_env_file(str(temp_dir / "none.env")) == {}

    def test_read_env_file_skips_bad_lines(self, temp_dir):
        """Test comments and lines without '=' are skipped."""
        path = temp_dir / "custom.env"
        path.write_text("# header\n\nNOT_A_PAIR\nA = \"1\"\nB=two=2\n", encoding="utf-8")

        assert read_env_file(str(path)) == {"A": "1", "B": "two=2"}


class TestEnvironmentParsers:
    """Test suite for the environment value parsers."""

    @pytest.mark.parametrize("url", ["ws://host:8765", "wss://host/path"])
    def test_valid_urls(self, url):
        """Test WebSocket URLs are accepted."""
        assert parse_url(f" {url} ") == url

    @pytest.mark.parametrize("url", ["http://host", "ws://", "host:8765"])
    def test_invalid_urls(self, url):
        """Test non-WebSocket URLs are rejected."""
        with pytest.raises(EnvironmentConfigError):
            parse_url(url)

    @pytest.mark.parametrize("path", ["../etc", "cache;rm", "  "])
    def test_unsafe_paths(self, path):
        """Test traversal, shell characters and blanks are rejected."""
        with pytest.raises(EnvironmentConfigError):
            parse_path(path)

    def test_camera_index_bounds(self):
        """Test camera index parsing and bounds."""
        assert parse_camera_index("3") == 3
        with pytest.raises(EnvironmentConfigError):
            parse_camera_index("64")
        with pytest.raises(EnvironmentConfigError):
            parse_camera_index("abc")

    def test_flags(self):
        """Test truthy spellings of boolean flags."""
        assert parse_flag("ON")
        assert not parse_flag("off")


class TestSaveConfig:
    """Test suite for save_config."""

    def test_round_trip(self, temp_dir, env_file):
        """Test saved settings load back, extra keys included."""
        path = str(temp_dir / "config.json")
        cfg = Config(cooldown_ms=750, extra={"operator": "lobby"})

        save_config(cfg, path)
        loaded = load_config(path, env_file=env_file)

        assert loaded.cooldown_ms == 750
        assert loaded.extra == {"operator": "lobby"}
        assert not (temp_dir / "config.json.backup").exists()
