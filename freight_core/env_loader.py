"""
Reads deployment settings (broker URL, confirmation timeout, secrets) from an
env file into os.environ before Django settings are evaluated.
"""
import logging
import os

logger = logging.getLogger(__name__)


def _parse_line(line):
    line = line.strip()
    if not line or line.startswith('#'):
        return None
    if line.startswith('export '):
        line = line[len('export '):]
    if '=' not in line:
        return None
    key, value = line.split('=', 1)
    key = key.strip()
    if not key:
        return None
    return key, value.strip().strip('"').strip("'")


def load_env_from_file(file_path, override=False):
    """
    Load KEY=VALUE pairs from ``file_path``.

    Variables already present in the environment win unless ``override`` is
    set. Returns the list of keys that were set, empty when the file is
    missing or unreadable.
    """
    if not os.path.exists(file_path):
        logger.debug(f"No env file at {file_path}")
        return []

    loaded = []
    try:
        with open(file_path, 'r', encoding='utf-8') as env_file:
            for raw in env_file:
                pair = _parse_line(raw)
                if pair is None:
                    continue
                key, value = pair
                if override or key not in os.environ:
                    os.environ[key] = value
                    loaded.append(key)
    except OSError as e:
        logger.error(f"Could not read env file {file_path}: {e}")
        return []

    logger.info(f"Loaded {len(loaded)} setting(s) from {file_path}")
    return loaded
