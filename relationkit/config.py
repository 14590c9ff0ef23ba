"""Configuration for RelationKit.

Holds the enums shared by declarations and writers and the
RelationKitConfig dataclass loaded from ``relationkit.yaml`` or
``RELATIONKIT_*`` environment variables.
"""

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from omegaconf import DictConfig, OmegaConf

CONFIG_FILE_NAME = "relationkit.yaml"
DEFAULT_DATABASE_URL = "sqlite+pysqlite:///:memory:"


class AssociationKind(Enum):
    """Kind of association declared on a schema."""

    HAS_MANY = "has_many"
    HAS_ONE = "has_one"
    BELONGS_TO = "belongs_to"
    MANY_TO_MANY = "many_to_many"

    @property
    def cardinality(self) -> str:
        if self in (AssociationKind.HAS_MANY, AssociationKind.MANY_TO_MANY):
            return "many"
        return "one"


class OnReplace(Enum):
    """What happens to an existing related record left out of a nested association write."""

    RAISE = "raise"
    DELETE_MISSING = "delete_missing"
    NILIFY_FOREIGN_KEY = "nilify_foreign_key"
    IGNORE = "ignore"
    MARK_AS_INVALID = "mark_as_invalid"


class OnDelete(Enum):
    """What happens to related records when their owner is deleted."""

    NOTHING = "nothing"
    DELETE_ALL = "delete_all"
    NILIFY_ALL = "nilify_all"


@dataclass
class RelationKitConfig:
    """Runtime configuration.

    Attributes:
        database_url: SQLAlchemy database URL.
        echo: Whether the engine logs every statement.
        default_on_replace: Policy used by associations that do not declare one.
        schemas_path: Optional path to a schema definition YAML file.
    """

    database_url: str = DEFAULT_DATABASE_URL
    echo: bool = False
    default_on_replace: OnReplace = OnReplace.RAISE
    schemas_path: Optional[str] = None

    @classmethod
    def from_config(cls, config_path: Path) -> "RelationKitConfig":
        """Load configuration from a YAML file.

        Args:
            config_path: Path to a YAML file, or a directory containing ``relationkit.yaml``.

        Returns:
            RelationKitConfig with file values merged over the defaults.
        """
        path = config_path / CONFIG_FILE_NAME if config_path.is_dir() else config_path
        loaded = OmegaConf.load(path)
        if not isinstance(loaded, DictConfig):
            raise TypeError(f"{path.name} must be a YAML mapping.")  # noqa: TRY003

        # enum nodes only accept member names, the file uses policy values
        on_replace = loaded.get("default_on_replace")
        if isinstance(on_replace, str) and on_replace in {p.value for p in OnReplace}:
            loaded.default_on_replace = OnReplace(on_replace).name

        merged = OmegaConf.merge(OmegaConf.structured(cls), loaded)
        config = OmegaConf.to_object(merged)
        if not isinstance(config, cls):
            raise TypeError(f"{path.name} did not resolve to {cls.__name__}.")  # noqa: TRY003
        return config

    @classmethod
    def from_env(cls) -> "RelationKitConfig":
        """Load configuration from ``RELATIONKIT_*`` environment variables.

        Returns:
            RelationKitConfig instance with environment values over the defaults.
        """
        echo = os.getenv("RELATIONKIT_ECHO", "false").lower() in ("1", "true", "yes", "on")
        return cls(
            database_url=os.getenv("RELATIONKIT_DATABASE_URL", DEFAULT_DATABASE_URL),
            echo=echo,
            default_on_replace=OnReplace(os.getenv("RELATIONKIT_ON_REPLACE", OnReplace.RAISE.value)),
            schemas_path=os.getenv("RELATIONKIT_SCHEMAS_PATH"),
        )
