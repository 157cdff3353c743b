import json

import pytest
import structlog

from atom_tracker import Config, InvalidArgumentError, configure_logging, load_config
from atom_tracker.config import apply_overrides


def test_defaults():
    config = load_config()

    assert config.endpoint == "https://track.atom-data.io/"
    assert config.flush_interval_s == 10.0
    assert config.bulk_len == 20
    assert config.bulk_size_bytes == 10 * 1024
    assert config.retry_base_delay_s == 1.0
    assert config.retry_ceiling_s == 1200.0


def test_ini_file(tmp_path):
    path = tmp_path / "tracker.ini"
    path.write_text(
        "[atom]\n"
        "endpoint = https://atom.example.test/\n"
        "auth = key\n"
        "[tracker]\n"
        "bulk_len = 3\n"
        "flush_interval_s = 2.5\n"
        "[retry]\n"
        "ceiling_s = 60\n"
    )

    config = load_config(str(path))

    assert config.endpoint == "https://atom.example.test/"
    assert config.auth == "key"
    assert config.bulk_len == 3
    assert config.flush_interval_s == 2.5
    assert config.retry_ceiling_s == 60.0


def test_env_overrides_ini(tmp_path, monkeypatch):
    path = tmp_path / "tracker.ini"
    path.write_text("[tracker]\nbulk_len = 3\n")
    monkeypatch.setenv("ATOM_TRACKER_BULK_LEN", "7")
    monkeypatch.setenv("ATOM_TRACKER_AUTH", "from-env")

    config = load_config(str(path))

    assert config.bulk_len == 7
    assert config.auth == "from-env"


def test_missing_file_falls_back_to_defaults(tmp_path):
    assert load_config(str(tmp_path / "absent.ini")) == load_config()


def test_invalid_values_clamped():
    config = apply_overrides(
        Config(),
        bulk_len=0,
        bulk_size_bytes=-5,
        send_workers=0,
        retry_jitter_min_s=2.0,
        retry_jitter_max_s=1.0,
    )

    assert config.bulk_len == 1
    assert config.bulk_size_bytes == 1
    assert config.send_workers == 1
    assert (config.retry_jitter_min_s, config.retry_jitter_max_s) == (1.0, 2.0)


def test_non_positive_flush_interval_rejected():
    with pytest.raises(InvalidArgumentError):
        apply_overrides(Config(), flush_interval_s=0)


def test_unknown_option_rejected():
    with pytest.raises(InvalidArgumentError) as exc_info:
        apply_overrides(Config(), bulkLen=3)

    assert exc_info.value.details == {"option": "bulkLen"}


def test_configure_logging_renders_json(capsys):
    configure_logging(json=True, level="info")
    try:
        structlog.get_logger().info("batch_sent", stream="s", records=3)
        line = capsys.readouterr().out.strip().splitlines()[-1]
    finally:
        structlog.reset_defaults()

    event = json.loads(line)
    assert event["event"] == "batch_sent"
    assert event["stream"] == "s"
    assert event["level"] == "info"
    assert "timestamp" in event


@pytest.mark.parametrize(
    "option,value",
    [
        ("retry_base_delay_s", 0),
        ("retry_base_delay_s", -1.0),
        ("retry_ceiling_s", 0),
        ("retry_ceiling_s", -5.0),
    ],
)
def test_non_positive_retry_timing_rejected(option, value):
    with pytest.raises(InvalidArgumentError):
        apply_overrides(Config(), **{option: value})


def test_negative_jitter_clamped_so_ceiling_is_reached():
    from atom_tracker.transmission.backoff import Backoff

    config = apply_overrides(
        Config(),
        retry_base_delay_s=0.001,
        retry_ceiling_s=1.0,
        retry_jitter_min_s=-5.0,
        retry_jitter_max_s=-1.0,
    )
    backoff = Backoff.from_config(config)
    for _ in range(50):
        if backoff.exhausted:
            break
        backoff.next_delay()

    assert (config.retry_jitter_min_s, config.retry_jitter_max_s) == (0.0, 0.0)
    assert backoff.exhausted
