import json

import pytest

from pypcdview.compression import gunzip, needs_decompression
from pypcdview.config import ViewerConfig, load_config, save_config
from pypcdview.errors import DecompressionError, FormatError
from pypcdview.logger import LogLevel, ViewerLogger, get_logger, set_logger
from pypcdview.utils import color_to_bytes, color_to_hex, parse_color


def test_defaults_validate():
    config = ViewerConfig().validated()
    assert config.point_size == 2.0
    assert config.point_color == (1.0, 1.0, 1.0)
    assert (config.width, config.height) == (800, 600)


def test_point_size_is_clamped():
    assert ViewerConfig(point_size=0.01).validated().point_size == 0.1
    assert ViewerConfig(point_size=50).validated().point_size == 10.0


@pytest.mark.parametrize("changes", [{'width': 0}, {'near': 0.0}, {'near': 5.0, 'far': 1.0},
                                     {'damping_factor': 0.0}, {'point_color': '#12'}])
def test_invalid_settings_are_rejected(changes):
    with pytest.raises(ValueError):
        ViewerConfig(**changes).validated()


def test_config_round_trip(tmp_path):
    path = tmp_path / 'config' / 'viewer.json'
    save_config(ViewerConfig(point_size=4.5, point_color=(0.0, 1.0, 0.0)).validated(), path)
    assert json.loads(path.read_text())['point_color'] == '#00ff00'

    loaded = load_config(path)
    assert loaded.point_size == 4.5
    assert loaded.point_color == (0.0, 1.0, 0.0)


def test_missing_or_broken_config_falls_back_to_defaults(tmp_path):
    assert load_config(tmp_path / 'absent.json') == ViewerConfig().validated()
    broken = tmp_path / 'broken.json'
    broken.write_text('{not json')
    assert load_config(broken) == ViewerConfig().validated()


def test_partial_config_keeps_other_defaults(tmp_path):
    path = tmp_path / 'partial.json'
    path.write_text(json.dumps({'width': 1024, 'theme': 'dark'}))
    config = load_config(path)
    assert config.width == 1024
    assert config.height == 600


def test_color_helpers():
    assert parse_color('#ff8000') == pytest.approx((1.0, 128 / 255, 0.0))
    assert parse_color([0.5, 0.5, 0.5]) == (0.5, 0.5, 0.5)
    assert color_to_hex((1.0, 0.0, 1.0)) == '#ff00ff'
    assert color_to_bytes((1.0, 0.5, 0.0)) == (255, 128, 0)
    with pytest.raises(ValueError):
        parse_color((2.0, 0.0, 0.0))


def test_compression_helpers():
    assert needs_decompression('scan.PCD.GZ')
    assert not needs_decompression('scan.pcd')
    with pytest.raises(DecompressionError):
        gunzip(b'plain bytes')


def test_format_error_is_a_value_error():
    assert issubclass(FormatError, ValueError)


def test_module_loggers_follow_set_logger(tmp_path):
    log_file = tmp_path / 'logs' / 'viewer.log'
    logger = get_logger('pypcdview.test')
    try:
        set_logger(ViewerLogger(mode='file', log_file=str(log_file), include_timestamp=False))
        logger.debug('hidden detail')
        logger('shown', 'warning')
        lines = log_file.read_text().splitlines()
        assert lines == ['[DEBUG] [pypcdview.test] hidden detail', '[WARNING] [pypcdview.test] shown']
        assert logger.isEnabledFor(LogLevel.DEBUG)
    finally:
        set_logger(None)
    assert not get_logger('pypcdview.test').isEnabledFor(LogLevel.DEBUG)


def test_logger_rejects_bad_mode():
    with pytest.raises(ValueError):
        ViewerLogger(mode='syslog')
    with pytest.raises(ValueError):
        ViewerLogger(mode='file')
