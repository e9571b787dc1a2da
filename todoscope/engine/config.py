"""Configuration management for todoscope."""

import importlib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Literal, Optional, Tuple

import yaml
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator, model_validator

from .errors import NarrowConfigError
from .keywords import DEFAULT_KEYWORDS


# Narrow key of candidates whose keyword has no bucket at all.
UNGROUPED: Optional[str] = None

DEFAULT_NARROW: List[Tuple[str, str]] = [
    ("t", "TODO"),
    ("f", "FIXME"),
    ("b", "BUG"),
    ("h", "HACK"),
]


@dataclass(frozen=True)
class NarrowMapping:
    """Narrow characters for catalogued keywords plus an optional other bucket."""
    pairs: Tuple[Tuple[str, str], ...]
    other: Optional[Tuple[str, str]] = None

    def key_for(self, keyword: str) -> Optional[str]:
        for char, name in self.pairs:
            if name == keyword:
                return char
        if self.other is not None:
            return self.other[0]
        return UNGROUPED

    @property
    def groups(self) -> Dict[str, str]:
        """Narrow character -> group label, in display order."""
        groups = {char: name for char, name in self.pairs}
        if self.other is not None:
            groups[self.other[0]] = self.other[1]
        return groups


def _is_pair(value: Any) -> bool:
    return (
        isinstance(value, (list, tuple))
        and len(value) == 2
        and isinstance(value[0], str)
        and len(value[0]) == 1
        and isinstance(value[1], str)
        and bool(value[1])
    )


class PreviewConfig(BaseModel):
    """When the directory picker previews the candidate under the cursor."""
    mode: Literal["none", "any", "debounce", "keys"] = "any"
    delay: float = 0.5
    keys: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_keys(self) -> "PreviewConfig":
        if self.mode == "keys" and not self.keys:
            raise ValueError("preview mode 'keys' needs at least one key")
        return self


class RipgrepConfig(BaseModel):
    executable: str = "rg"
    args: List[str] = Field(default_factory=list)
    globs: List[str] = Field(default_factory=list)


class StylesConfig(BaseModel):
    buffer: str = "cyan"
    file: str = "blue"
    line_number: str = "green"
    # Added to the keyword style of directory results.
    directory_keyword: str = "underline"


class LoggingConfig(BaseModel):
    level: str = "WARNING"
    file: Optional[Path] = None
    rotation: str = "1 day"
    retention: str = "7 days"


class Config(BaseModel):
    """Main configuration for todoscope.

    The extended narrow mapping is derived lazily and memoized; call
    :meth:`reconfigure` to change settings so the memo is dropped. Plain
    attribute assignment is validated but keeps the old mapping.
    """

    model_config = ConfigDict(validate_assignment=True)

    narrow: List[Tuple[str, str]] = Field(default_factory=lambda: list(DEFAULT_NARROW))
    other: Any = (".", "OTHER")
    comments_only: bool = False
    preview: PreviewConfig = Field(default_factory=PreviewConfig)
    slow_threshold: float = 3.0
    search_function: Optional[str] = None
    keywords: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_KEYWORDS))
    styles: StylesConfig = Field(default_factory=StylesConfig)
    ripgrep: RipgrepConfig = Field(default_factory=RipgrepConfig)
    default_directory: Optional[Path] = None
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    _narrow_cache: Optional[NarrowMapping] = PrivateAttr(default=None)

    @field_validator('narrow')
    @classmethod
    def validate_narrow(cls, v: List[Tuple[str, str]]) -> List[Tuple[str, str]]:
        chars = [c for c, _ in v]
        names = [k for _, k in v]
        for char in chars:
            if len(char) != 1:
                raise ValueError(f"narrow key must be a single character: {char!r}")
        if len(set(chars)) != len(chars):
            raise ValueError("narrow keys must be unique")
        if len(set(names)) != len(names):
            raise ValueError("narrow keywords must be unique")
        return v

    @field_validator('slow_threshold')
    @classmethod
    def validate_threshold(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("slow_threshold must be positive")
        return v

    @field_validator('keywords')
    @classmethod
    def validate_keywords(cls, v: Dict[str, str]) -> Dict[str, str]:
        if not v:
            raise ValueError("at least one keyword is required")
        return v

    def narrow_mapping(self) -> NarrowMapping:
        """Narrow mapping extended with the other bucket.

        Raises NarrowConfigError when the other pair reuses a narrow key or
        keyword. A malformed other pair is reported and dropped.
        """
        if self._narrow_cache is None:
            self._narrow_cache = self._extend_narrow()
        return self._narrow_cache

    def _extend_narrow(self) -> NarrowMapping:
        pairs = tuple((char, name) for char, name in self.narrow)
        if self.other is None:
            return NarrowMapping(pairs)
        if not _is_pair(self.other):
            logger.warning(
                f"Ignoring malformed other pair {self.other!r}; "
                "uncatalogued keywords will not be narrowable"
            )
            return NarrowMapping(pairs)

        char, label = self.other
        if char in {c for c, _ in pairs}:
            raise NarrowConfigError(f"Narrow key {char!r} of the other pair is already bound")
        if label in {name for _, name in pairs}:
            raise NarrowConfigError(f"Other label {label!r} is already a narrow keyword")
        return NarrowMapping(pairs, (char, label))

    def reconfigure(self, **changes: Any) -> "Config":
        """Apply setting changes and drop derived values."""
        for name, value in changes.items():
            if name not in type(self).model_fields:
                raise AttributeError(f"Unknown setting: {name}")
            setattr(self, name, value)
        self._narrow_cache = None
        logger.debug(f"Reconfigured: {sorted(changes)}")
        return self

    def load_search_function(self) -> Optional[Callable[[str], Any]]:
        """Import the configured ``module:function`` directory search hook."""
        if not self.search_function:
            return None
        module_name, _, attr = self.search_function.partition(":")
        if not attr:
            module_name, _, attr = self.search_function.rpartition(".")
        module = importlib.import_module(module_name)
        return getattr(module, attr)

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Config":
        """Load configuration from YAML file, or defaults when none exists."""
        if config_path is None:
            # Try default locations
            candidates = [
                Path("todoscope.yaml"),
                Path.home() / ".config" / "todoscope" / "config.yaml",
            ]
            for candidate in candidates:
                if candidate.exists():
                    config_path = candidate
                    break
            else:
                logger.debug("No config file found, using defaults")
                return cls()

        logger.info(f"Loading config from: {config_path}")
        with open(config_path, 'r') as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    def save(self, config_path: Path) -> None:
        """Save configuration to YAML file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, 'w') as f:
            yaml.safe_dump(self.model_dump(mode="json"), f, default_flow_style=False)
