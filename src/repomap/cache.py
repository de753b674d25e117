"""Persistence of the repo map and its stale marker.

The map lives at ``<project>/<state_dir>/repo-map.json``; a sibling
``repo-map.stale`` file, when present, tells readers the map is known to be
out of date (a commit hook creates it). Saving a map removes the marker.

Single writer per checkout is assumed: there is no locking, but writes go
through a temporary file and a rename so readers never see a partial map.

Example:
    >>> save('/my/project', repo_map)
    >>> load('/my/project').stats.total_files
    42
    >>> mark_stale('/my/project'); is_marked_stale('/my/project')
    True
"""

import json
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

from .config import RepoMapConfig, load_config
from .exceptions import InvalidMapError
from .models import MapSummary, RepoMap, utc_now

logger = logging.getLogger(__name__)

MAP_FILENAME = "repo-map.json"
STALE_FILENAME = "repo-map.stale"


def get_state_dir(base_path, config: Optional[RepoMapConfig] = None) -> Path:
    config = config or load_config(base_path)
    state_dir = Path(config.state_dir).expanduser()
    if state_dir.is_absolute():
        return state_dir
    return Path(base_path) / state_dir


def get_map_path(base_path, config: Optional[RepoMapConfig] = None) -> Path:
    return get_state_dir(base_path, config) / MAP_FILENAME


def get_stale_path(base_path, config: Optional[RepoMapConfig] = None) -> Path:
    return get_state_dir(base_path, config) / STALE_FILENAME


def _read_json(path: Path) -> Optional[Dict[str, Any]]:
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning("Could not read repo map %s: %s", path, e)
        return None
    return data if isinstance(data, dict) else None


def load(base_path, config: Optional[RepoMapConfig] = None) -> Optional[RepoMap]:
    """Load the persisted map.

    Returns:
        The map, or None when it is missing, unreadable or malformed.
    """
    path = get_map_path(base_path, config)
    data = _read_json(path)
    if data is None:
        return None
    try:
        return RepoMap.from_dict(data)
    except InvalidMapError as e:
        logger.warning("Ignoring invalid repo map %s: %s", path, e)
        return None


def save(base_path, repo_map: RepoMap, config: Optional[RepoMapConfig] = None) -> Path:
    """Write the map atomically and clear the stale marker.

    Stamps ``repo_map.updated`` with the current time.

    Returns:
        Path of the written file.
    """
    map_path = get_map_path(base_path, config)
    map_path.parent.mkdir(parents=True, exist_ok=True)
    repo_map.updated = utc_now()

    tmp_fd = None
    tmp_path = None
    try:
        tmp_fd, tmp_path = tempfile.mkstemp(suffix=".json.tmp", dir=map_path.parent, prefix=".repo-map_")
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as f:
            tmp_fd = None
            json.dump(repo_map.to_dict(), f, indent=2)
        shutil.move(tmp_path, map_path)
        tmp_path = None
    finally:
        if tmp_fd is not None:
            os.close(tmp_fd)
        if tmp_path is not None and os.path.exists(tmp_path):
            os.unlink(tmp_path)

    clear_stale(base_path, config)
    logger.debug("Saved repo map to %s", map_path)
    return map_path


def exists(base_path, config: Optional[RepoMapConfig] = None) -> bool:
    return get_map_path(base_path, config).is_file()


def mark_stale(base_path, config: Optional[RepoMapConfig] = None) -> Path:
    """Create the stale marker (contents are a timestamp, for humans)."""
    stale_path = get_stale_path(base_path, config)
    stale_path.parent.mkdir(parents=True, exist_ok=True)
    stale_path.write_text(utc_now(), encoding="utf-8")
    return stale_path


def clear_stale(base_path, config: Optional[RepoMapConfig] = None) -> None:
    get_stale_path(base_path, config).unlink(missing_ok=True)


def is_marked_stale(base_path, config: Optional[RepoMapConfig] = None) -> bool:
    return get_stale_path(base_path, config).exists()


def get_status(base_path, config: Optional[RepoMapConfig] = None) -> Optional[MapSummary]:
    """Summarize the persisted map from its raw JSON, without building records."""
    data = _read_json(get_map_path(base_path, config))
    if data is None or not isinstance(data.get("files"), dict):
        return None

    git = data.get("git") if isinstance(data.get("git"), dict) else {}
    stats = data.get("stats") if isinstance(data.get("stats"), dict) else {}
    project = data.get("project") if isinstance(data.get("project"), dict) else {}
    return MapSummary(
        generated=data.get("generated"),
        updated=data.get("updated"),
        commit=git.get("commit"),
        branch=git.get("branch"),
        files=len(data["files"]),
        symbols=int(stats.get("totalSymbols") or 0),
        languages=list(project.get("languages") or []),
    )
