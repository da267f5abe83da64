"""
mir_dump.configuration
======================

Settings for one mir_dump run.

A :class:`Configuration` is built once at startup by
:meth:`Configuration.load` and handed to every consumer.  It is a frozen
``pydantic_settings.BaseSettings``; sources are layered, later ones winning:

1. built-in defaults;
2. ``mir_dump.toml`` in the working directory, if present;
3. the TOML file given to :meth:`Configuration.load` or named by
   ``$MIR_DUMP_CONFIG``, if it exists;
4. environment variables ``MIR_DUMP_<KEY>`` (e.g. ``MIR_DUMP_DUMP_MIR_PROC``);
5. explicit overrides (command-line flags).

TOML files hold the keys at top level.
"""

from __future__ import annotations

import logging
import os
import tomllib
from contextvars import ContextVar
from pathlib import Path
from typing import Any, Mapping, Optional, Tuple, Type

from pydantic import ValidationError, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

from mir_dump.errors import ConfigurationError, ErrorCodes

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "mir_dump.toml"
CONFIG_ENV_VAR = "MIR_DUMP_CONFIG"
ENV_PREFIX = "MIR_DUMP_"

# Explicit file handed to Configuration.load(); falls back to $MIR_DUMP_CONFIG.
_config_file: ContextVar[Optional[Path]] = ContextVar("mir_dump_config_file", default=None)


class Configuration(BaseSettings):
    """Immutable run configuration.

    Attributes
    ----------
    log_dir : str
        Directory holding ``mir/rustc.<def_path>.-------.renumber.0.mir``.
    facts_dir : str
        Directory holding ``<def_path>/*.facts``; reports are written there.
    dump_mir_proc : str or None
        If set, only the function with this name is dumped.
    dump_mir_info : bool
        Master switch; when ``False`` nothing is dumped.
    dump_show_temp_variables : bool
        Emit the table of locals with their types and regions.
    dump_show_statement_indices : bool
        Emit the statement-number column.
    dump_debug_info : bool
        Emit the table of synthesized loans and log at DEBUG level.
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_ignore_empty=True,
        extra="forbid",
        frozen=True,
    )

    log_dir: str = "./log/"
    facts_dir: str = "nll-facts"
    dump_mir_proc: Optional[str] = None
    dump_mir_info: bool = True
    dump_show_temp_variables: bool = True
    dump_show_statement_indices: bool = True
    dump_debug_info: bool = False

    @field_validator("dump_mir_proc", mode="before")
    @classmethod
    def _empty_proc_is_unset(cls, value: Any) -> Any:
        return None if value == "" else value

    # ----- sources ----------------------------------------------------------

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        sources = [init_settings, env_settings]
        named = _named_config_file()
        if named is not None:
            sources.append(TomlConfigSettingsSource(settings_cls, toml_file=named))
        sources.append(TomlConfigSettingsSource(settings_cls, toml_file=DEFAULT_CONFIG_FILE))
        return tuple(sources)

    # ----- construction -----------------------------------------------------

    @classmethod
    def load(
        cls,
        config_file: Optional[Path] = None,
        overrides: Optional[Mapping[str, Any]] = None,
    ) -> "Configuration":
        """Build the configuration from every source (see module docs).

        ``None`` values in *overrides* are ignored, so unset command-line
        flags fall through to the lower layers.
        """
        values = {k: v for k, v in (overrides or {}).items() if v is not None}
        token = _config_file.set(config_file)
        try:
            return cls(**values)
        except ValidationError as exc:
            raise _invalid(exc) from exc
        except (OSError, tomllib.TOMLDecodeError) as exc:
            raise ConfigurationError(
                f"cannot read configuration file: {exc}",
                code=ErrorCodes.INVALID_CONFIG_FILE,
                context={"path": str(_named_config_file() or DEFAULT_CONFIG_FILE)},
            ) from exc
        finally:
            _config_file.reset(token)

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "Configuration":
        """Validate *values* without consulting files or the environment."""
        try:
            return cls.model_validate(dict(values))
        except ValidationError as exc:
            raise _invalid(exc) from exc

    @classmethod
    def keys(cls):
        return list(cls.model_fields)

    def replace(self, **changes: Any) -> "Configuration":
        return self.from_mapping({**self.model_dump(), **changes})

    # ----- derived paths ----------------------------------------------------

    def facts_path(self, def_path: str) -> Path:
        """Directory with the relation files of a function."""
        return Path(self.facts_dir) / def_path

    def renumber_path(self, def_path: str) -> Path:
        """Renumber MIR dump of a function."""
        return Path(self.log_dir) / "mir" / f"rustc.{def_path}.-------.renumber.0.mir"

    def graph_path(self, def_path: str) -> Path:
        """Output path of the report of a function."""
        return self.facts_path(def_path) / "graph.dot"

    def dump(self) -> str:
        """Generate a printable dump of the settings."""
        return "\n".join(
            f"{key} = {getattr(self, key)!r}" for key in self.keys()
        )


def _named_config_file() -> Optional[Path]:
    explicit = _config_file.get()
    if explicit is not None:
        return explicit
    named = os.environ.get(CONFIG_ENV_VAR, "")
    if not named:
        return None
    path = Path(named)
    if not path.is_file():
        logger.debug("%s=%s does not name a file; ignored", CONFIG_ENV_VAR, named)
        return None
    return path


def _invalid(exc: ValidationError) -> ConfigurationError:
    first = exc.errors()[0]
    key = ".".join(str(part) for part in first["loc"])
    if first["type"] == "extra_forbidden":
        return ConfigurationError(
            f"unknown configuration key '{key}'",
            context={"known": ",".join(Configuration.keys())},
        )
    return ConfigurationError(
        f"invalid value for '{key}': {first['msg']}",
        context={"value": first.get("input")},
    )
