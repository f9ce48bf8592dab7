"""
Load/save hooks for the player registry.

The registry is stored as a JSON object of account -> character so known
players are recognized from the first line of the next session.
"""

import json
import logging
from pathlib import Path
from typing import Union

from .exceptions import ConfigurationError
from .models.players import PlayerRegistry

logger = logging.getLogger(__name__)


def save_registry(registry: PlayerRegistry, path: Union[str, Path]) -> Path:
    """
    Write the registry mapping to ``path``.

    Args:
        registry: Registry to save
        path: JSON file to write; parent directories are created

    Returns:
        The path written
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {"players": registry.to_mapping()}
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, sort_keys=True)
    tmp_path.replace(path)
    logger.info(f"Saved {len(payload['players'])} players to {path}")
    return path


def load_registry(path: Union[str, Path], main_player_timeout: float = 300.0) -> PlayerRegistry:
    """
    Build a registry from a file written by ``save_registry``.

    A missing file gives an empty registry.

    Raises:
        ConfigurationError: If the file is not valid registry JSON
    """
    path = Path(path)
    if not path.exists():
        logger.debug(f"No player file at {path}, starting empty")
        return PlayerRegistry(main_player_timeout=main_player_timeout)

    try:
        with open(path, "r", encoding="utf-8") as f:
            payload = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot read player file {path}: {e}") from e

    players = payload.get("players") if isinstance(payload, dict) else None
    if not isinstance(players, dict):
        raise ConfigurationError(f"Player file {path} has no 'players' mapping")

    registry = PlayerRegistry.from_mapping(
        {str(k): str(v) for k, v in players.items() if v},
        main_player_timeout=main_player_timeout,
    )
    logger.info(f"Loaded {len(players)} players from {path}")
    return registry
