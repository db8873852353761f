"""
Configuration of the evolutionary search.

Parameters are kept in a dataclass and can be loaded from YAML so that runs
stay reproducible and configurable.
"""
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Dict

import yaml

# Capacity of the solution table (number of slots).
TABLE_SIZE = 50


@dataclass
class EvoConfig:
    # Population
    table_size: int = TABLE_SIZE
    generations: int = 100
    offspring_per_generation: int = 10
    elimination_count: int = 2

    # Execution
    workers: int = 4
    seed: int = 42

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EvoConfig":
        merged = asdict(cls())
        for k, v in data.items():
            if k in merged:
                merged[k] = v
        return cls(**merged)

    def __post_init__(self):
        if self.table_size < 2:
            raise ValueError("table_size must allow at least two parents")
        if self.workers < 1:
            raise ValueError("workers must be positive")


def _load_yaml(path: Path) -> Any:
    if not path.exists():
        return {}
    text = path.read_text(encoding="utf-8")
    return yaml.safe_load(text) or {}


def load_config(path: str = "config.yaml") -> EvoConfig:
    data = _load_yaml(Path(path))
    if not isinstance(data, dict):
        raise ValueError("config.yaml must contain a mapping")
    return EvoConfig.from_dict(data)
