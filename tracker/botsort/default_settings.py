"""
    Default tracker settings and the immutable configuration built from them.
"""
import configparser
from dataclasses import dataclass, fields, replace
from typing import Optional


class _SettingsTable(type):
    """Lets a settings class be read like a dict: ``GeneralSettings['match_thresh']``."""

    def __getitem__(cls, key):
        return cls.values[key]

    def __contains__(cls, key):
        return key in cls.values


class GeneralSettings(metaclass=_SettingsTable):
    values = {
        'track_high_thresh': 0.45,
        'track_low_thresh': 0.1,
        'new_track_thresh': 0.6,
        'track_buffer': 30,
        'match_thresh': 0.8,
        'proximity_thresh': 0.5,
        'appearance_thresh': 0.25,
        'unconfirmed_match_thresh': 0.7,
        'duplicate_thresh': 0.15,
        'frame_rate': 30,
        'lambda_': 0.985,
        'long_lost_frames': 10,
        'use_reid': False,
    }


class GMCSettings(metaclass=_SettingsTable):
    values = {
        'method': 'sparseOptFlow',
        'downscale': 2,
    }

    methods = ('none', 'ecc', 'sparseOptFlow')


_THRESHOLDS = (
    'track_high_thresh', 'track_low_thresh', 'new_track_thresh', 'match_thresh',
    'proximity_thresh', 'appearance_thresh', 'unconfirmed_match_thresh', 'duplicate_thresh',
)


@dataclass(frozen=True)
class BoTSORTConfig:
    """
    Constructor-time tracker configuration, fixed for the lifetime of a tracker.

    ``track_buffer`` is expressed in frames at 30 fps and rescaled by ``frame_rate``
    into ``max_time_lost``. ``long_lost_frames`` is how long a track may stay Lost
    before it is demoted to LongLost.
    """
    track_high_thresh: float = GeneralSettings['track_high_thresh']
    track_low_thresh: float = GeneralSettings['track_low_thresh']
    new_track_thresh: float = GeneralSettings['new_track_thresh']
    track_buffer: int = GeneralSettings['track_buffer']
    match_thresh: float = GeneralSettings['match_thresh']
    proximity_thresh: float = GeneralSettings['proximity_thresh']
    appearance_thresh: float = GeneralSettings['appearance_thresh']
    unconfirmed_match_thresh: float = GeneralSettings['unconfirmed_match_thresh']
    duplicate_thresh: float = GeneralSettings['duplicate_thresh']
    frame_rate: int = GeneralSettings['frame_rate']
    lambda_: float = GeneralSettings['lambda_']
    long_lost_frames: int = GeneralSettings['long_lost_frames']
    gmc_method: str = GMCSettings['method']
    gmc_downscale: int = GMCSettings['downscale']
    use_reid: bool = GeneralSettings['use_reid']

    def __post_init__(self):
        for name in _THRESHOLDS:
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must lie in [0, 1], got {value}")
        if self.track_low_thresh > self.track_high_thresh:
            raise ValueError("track_low_thresh must not exceed track_high_thresh")
        if not 0.0 <= self.lambda_ <= 1.0:
            raise ValueError(f"lambda_ must lie in [0, 1], got {self.lambda_}")
        if self.track_buffer < 1 or self.frame_rate < 1:
            raise ValueError("track_buffer and frame_rate must be positive")
        if self.long_lost_frames < 1:
            raise ValueError("long_lost_frames must be positive")
        if self.gmc_downscale < 1:
            raise ValueError("gmc_downscale must be >= 1")
        if self.gmc_method not in GMCSettings.methods:
            raise ValueError(f"unknown gmc_method {self.gmc_method!r}, expected one of {GMCSettings.methods}")

    @property
    def buffer_size(self) -> int:
        return max(1, int(self.frame_rate / 30.0 * self.track_buffer))

    @property
    def max_time_lost(self) -> int:
        return self.buffer_size

    def replace(self, **overrides) -> "BoTSORTConfig":
        """Copy with some fields overridden; ``None`` values are ignored."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    @classmethod
    def from_ini(cls, path, section: str = 'tracker', gmc_section: Optional[str] = 'gmc') -> "BoTSORTConfig":
        """
        Reads a config file laid out like::

            [tracker]
            track_high_thresh = 0.6
            track_buffer = 30

            [gmc]
            method = ecc
            downscale = 2

        Unknown keys are rejected so that typos do not silently fall back to defaults.
        """
        parser = configparser.ConfigParser()
        if not parser.read(path):
            raise FileNotFoundError(path)

        types = {f.name: f.type for f in fields(cls)}
        kwargs = {}
        if parser.has_section(section):
            for key, raw in parser.items(section):
                if key not in types:
                    raise ValueError(f"unknown tracker setting {key!r} in {path}")
                kwargs[key] = _parse_value(parser, section, key, types[key])

        if gmc_section and parser.has_section(gmc_section):
            for key in parser.options(gmc_section):
                if key == 'method':
                    kwargs['gmc_method'] = parser.get(gmc_section, key)
                elif key == 'downscale':
                    kwargs['gmc_downscale'] = parser.getint(gmc_section, key)
                else:
                    raise ValueError(f"unknown gmc setting {key!r} in {path}")

        return cls(**kwargs)


def _parse_value(parser, section, key, type_):
    # dataclass field types are strings when annotations are postponed
    type_name = type_ if isinstance(type_, str) else type_.__name__
    if type_name == 'bool':
        return parser.getboolean(section, key)
    if type_name == 'int':
        return parser.getint(section, key)
    if type_name == 'float':
        return parser.getfloat(section, key)
    return parser.get(section, key)
