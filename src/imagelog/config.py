import os
import copy
import tempfile
import yaml

from imagelog.errors import ConfigError

DEFAULTS = {
    'aws': {
        'region': None,
        'source_bucket': None,
        'thumbnail_bucket': None,
        'processed_bucket': None,
        'dynamo_table': None,
    },
    'processing': {
        'exiftool_path': 'exiftool',
        'exiftool_args': ['-json', '-n'],
        'thumbnail_size': '200x200',
        'processed_format': 'JPEG',
        'extensions': ['.jpg', '.jpeg', '.png', '.gif'],
        'max_depth': 32,
        'tmp_dir': None,
        'conditional_insert': False,
        'geohash_precision': 9,
        'debug': False,
    },
}

# Environment variables injected by the deployment template win over config.yaml
ENV_OVERRIDES = {
    'SOURCE_BUCKET': ('aws', 'source_bucket'),
    'THUMB_BUCKET': ('aws', 'thumbnail_bucket'),
    'PROCESSED_BUCKET': ('aws', 'processed_bucket'),
    'DYNAMO_TABLE': ('aws', 'dynamo_table'),
    'AWS_REGION': ('aws', 'region'),
    'EXIFTOOL_PATH': ('processing', 'exiftool_path'),
    'IMAGELOG_DEBUG': ('processing', 'debug'),
}

REQUIRED = ('source_bucket', 'thumbnail_bucket', 'processed_bucket', 'dynamo_table')


def load_config(config_path=None, environ=None):
    environ = os.environ if environ is None else environ
    config_path = config_path or environ.get('IMAGELOG_CONFIG', 'config.yaml')

    cfg = copy.deepcopy(DEFAULTS)
    if os.path.exists(config_path):
        with open(config_path, 'r') as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ConfigError(f"{config_path} must contain a mapping of sections")
        for section, values in loaded.items():
            if not isinstance(values, dict):
                raise ConfigError(f"Section '{section}' in {config_path} must be a mapping")
            cfg.setdefault(section, {}).update(values)

    for var, (section, name) in ENV_OVERRIDES.items():
        if environ.get(var):
            cfg[section][name] = environ[var]
    return cfg


def parse_size(value):
    """Accepts '200x200', [200, 200] or a single int for a square box."""
    try:
        if isinstance(value, int):
            return value, value
        if isinstance(value, str):
            width, height = map(int, value.lower().split('x'))
        else:
            width, height = map(int, value)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid thumbnail size: {value!r}")
    if width <= 0 or height <= 0:
        raise ConfigError(f"Invalid thumbnail size: {value!r}")
    return width, height


def _as_int(name, value):
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"processing.{name} must be an integer, got {value!r}")


def _as_list(name, value):
    # a lone string is a one-item list, not a sequence of characters
    if isinstance(value, str):
        return [value]
    if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"processing.{name} must be a list of strings, got {value!r}")
    return list(value)


def _as_bool(value):
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


def build_settings(cfg):
    """Flattens the loaded config into the settings dict the processor reads."""
    aws = cfg.get('aws', {})
    proc = dict(DEFAULTS['processing'], **cfg.get('processing', {}))

    missing = [name for name in REQUIRED if not aws.get(name)]
    if missing:
        raise ConfigError(f"Missing required configuration: {', '.join(missing)}")

    extensions = tuple(
        (ext if ext.startswith('.') else f".{ext}").lower()
        for ext in _as_list('extensions', proc['extensions'])
    )
    if not extensions:
        raise ConfigError("processing.extensions must name at least one extension")

    return {
        'region': aws.get('region'),
        'source_bucket': aws['source_bucket'],
        'thumbnail_bucket': aws['thumbnail_bucket'],
        'processed_bucket': aws['processed_bucket'],
        'dynamo_table': aws['dynamo_table'],
        'exiftool_path': proc['exiftool_path'],
        'exiftool_args': _as_list('exiftool_args', proc['exiftool_args'] or []),
        'thumbnail_size': parse_size(proc['thumbnail_size']),
        'processed_format': str(proc['processed_format']).upper(),
        'extensions': extensions,
        'max_depth': _as_int('max_depth', proc['max_depth']),
        'tmp_dir': proc['tmp_dir'] or tempfile.gettempdir(),
        'conditional_insert': _as_bool(proc['conditional_insert']),
        'geohash_precision': _as_int('geohash_precision', proc['geohash_precision']),
        'debug': _as_bool(proc['debug']),
    }
