from dataclasses import FrozenInstanceError

import pytest

from tracker.botsort.default_settings import BoTSORTConfig, GeneralSettings, GMCSettings


def test_tables_are_subscriptable():
    assert GeneralSettings['match_thresh'] == 0.8
    assert 'track_buffer' in GeneralSettings
    assert GMCSettings['method'] == 'sparseOptFlow'


def test_defaults():
    cfg = BoTSORTConfig()
    assert cfg.track_high_thresh == 0.45
    assert cfg.new_track_thresh == 0.6
    assert cfg.max_time_lost == 30


def test_buffer_scales_with_frame_rate():
    assert BoTSORTConfig(frame_rate=15).max_time_lost == 15
    assert BoTSORTConfig(frame_rate=60, track_buffer=10).max_time_lost == 20


@pytest.mark.parametrize("overrides", [
    {'match_thresh': 1.5},
    {'track_low_thresh': 0.6, 'track_high_thresh': 0.5},
    {'track_buffer': 0},
    {'gmc_method': 'orb'},
    {'lambda_': -0.1},
])
def test_invalid_values(overrides):
    with pytest.raises(ValueError):
        BoTSORTConfig(**overrides)


def test_replace_ignores_none():
    cfg = BoTSORTConfig().replace(match_thresh=0.7, frame_rate=None)
    assert cfg.match_thresh == 0.7
    assert cfg.frame_rate == 30
    with pytest.raises(FrozenInstanceError):
        cfg.match_thresh = 0.1


def test_from_ini(tmp_path):
    path = tmp_path / "tracker.ini"
    path.write_text(
        "[tracker]\n"
        "track_high_thresh = 0.6\n"
        "track_buffer = 60\n"
        "use_reid = yes\n"
        "\n"
        "[gmc]\n"
        "method = ecc\n"
        "downscale = 4\n")
    cfg = BoTSORTConfig.from_ini(str(path))
    assert cfg.track_high_thresh == 0.6
    assert cfg.track_buffer == 60
    assert cfg.use_reid is True
    assert cfg.gmc_method == 'ecc'
    assert cfg.gmc_downscale == 4


def test_from_ini_rejects_unknown_keys(tmp_path):
    path = tmp_path / "tracker.ini"
    path.write_text("[tracker]\nmatch_treshold = 0.5\n")
    with pytest.raises(ValueError):
        BoTSORTConfig.from_ini(str(path))


def test_from_ini_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        BoTSORTConfig.from_ini(str(tmp_path / "nope.ini"))
