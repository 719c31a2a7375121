from __future__ import annotations

import copy
import dataclasses
import logging
import os
from pathlib import Path
from typing import Any, Mapping, MutableMapping, Optional, Protocol, Sequence

import yaml
from dotenv import dotenv_values

from prompter_live.config.models import AppConfig, CliOverrides, ConfigLoadRequest

logger = logging.getLogger(__name__)

ConfigPath = tuple[str, ...]

# Where each command-line flag lands in the config document.
_CLI_OVERRIDE_PATHS: dict[str, ConfigPath] = {
    "channel_id": ("youtube", "channel_id"),
    "oauth_port": ("youtube", "oauth_port"),
    "poll_interval_seconds": ("pipeline", "poll_interval_seconds"),
    "api_key": ("ai", "llm", "api_key"),
    "model": ("ai", "llm", "model"),
    "system_instruction": ("ai", "system_instruction"),
    "comment_length_cap": ("pipeline", "comment_length_cap"),
    "dry_run": ("app", "dry_run"),
}


class ConfigLoader(Protocol):
    """
    Loads effective runtime configuration.

    Precedence, lowest first: model defaults, YAML file, `.env`, process
    environment, then the command-line overrides carried by the request.
    """

    async def load(self, request: ConfigLoadRequest = ConfigLoadRequest()) -> AppConfig:
        ...


def _dotted(path: Sequence[str]) -> str:
    return ".".join(path)


def _merge_yaml_section(target: MutableMapping[str, Any], section: Mapping[str, Any]) -> None:
    for key, value in section.items():
        current = target.get(key)
        if isinstance(value, Mapping) and isinstance(current, MutableMapping):
            _merge_yaml_section(current, value)
        else:
            target[key] = value


def _read_yaml_document(path: Path, *, optional: bool) -> dict[str, Any]:
    if not path.exists():
        if optional:
            logger.debug("config.yaml_skipped path=%s", path)
            return {}
        raise FileNotFoundError(f"Config file not found: {path}")

    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Top-level YAML must be a mapping, got: {type(data).__name__}")
    return data


def _environment(dotenv_path: Optional[str]) -> dict[str, str]:
    """Process environment layered over `.env`; the real environment wins."""
    environ: dict[str, str] = {}
    if dotenv_path is not None and Path(dotenv_path).exists():
        environ.update({k: v for k, v in dotenv_values(dotenv_path).items() if v is not None})
    environ.update(os.environ)
    return environ


def _lookup_leaf(document: Mapping[str, Any], path: ConfigPath) -> Any:
    node: Any = document
    for depth, segment in enumerate(path):
        if not isinstance(node, Mapping):
            raise TypeError(f"Configuration key path does not point to a mapping: {_dotted(path[:depth])}")
        if segment not in node:
            raise KeyError(f"Unknown configuration key path: {_dotted(path)}")
        node = node[segment]
    return node


def _assign(document: MutableMapping[str, Any], path: ConfigPath, value: Any) -> None:
    node = document
    for segment in path[:-1]:
        node = node[segment]
    node[path[-1]] = value


def _env_overrides(environ: Mapping[str, str], prefix: str, document: Mapping[str, Any]) -> dict[ConfigPath, str]:
    """
    Map `PROMPTER__SECTION__KEY=value` variables onto config paths.

    Only existing string leaves may be overridden; secrets such as the LLM API key
    and the OAuth client secret are meant to arrive this way.
    """
    overrides: dict[ConfigPath, str] = {}
    for name, value in environ.items():
        if not name.startswith(prefix):
            continue
        path = tuple(part.lower() for part in name[len(prefix) :].split("__") if part)
        if not path:
            raise ValueError(f"Invalid environment variable override name: {name}")
        existing = _lookup_leaf(document, path)
        if isinstance(existing, Mapping):
            raise TypeError(f"Environment override must name a single value, not a section: {_dotted(path)}")
        if not isinstance(existing, str):
            raise TypeError(
                f"Environment variable overrides are only allowed for string values. "
                f"Key '{_dotted(path)}' is {type(existing).__name__}."
            )
        overrides[path] = value
    return overrides


def _cli_overrides(overrides: CliOverrides) -> dict[ConfigPath, Any]:
    return {
        _CLI_OVERRIDE_PATHS[f.name]: getattr(overrides, f.name)
        for f in dataclasses.fields(overrides)
        if getattr(overrides, f.name) is not None
    }


def _check_runtime_rules(config: AppConfig) -> None:
    """Cross-field rules the section models cannot express on their own."""
    template = config.ai.comment_template
    if "{text}" not in template:
        raise ValueError("ai.comment_template must contain the {text} placeholder")
    try:
        template.format(author="viewer", text="comment")
    except (KeyError, IndexError, ValueError) as exc:
        raise ValueError(f"ai.comment_template is not a valid template: {template!r}") from exc

    pipeline = config.pipeline
    if pipeline.poll_interval_seconds <= 0:
        raise ValueError("pipeline.poll_interval_seconds must be positive")
    if pipeline.rediscovery_interval_seconds <= 0:
        raise ValueError("pipeline.rediscovery_interval_seconds must be positive")
    if config.ai.exchange_timeout_seconds <= 0:
        raise ValueError("ai.exchange_timeout_seconds must be positive")


class YamlConfigLoader:
    async def load(self, request: ConfigLoadRequest = ConfigLoadRequest()) -> AppConfig:
        document: dict[str, Any] = copy.deepcopy(AppConfig().model_dump(mode="python"))
        _merge_yaml_section(document, _read_yaml_document(Path(request.yaml_path), optional=request.yaml_optional))

        env_overrides = _env_overrides(_environment(request.dotenv_path), request.env_prefix, document)
        cli_overrides = _cli_overrides(request.overrides)
        for path, value in (*env_overrides.items(), *cli_overrides.items()):
            _assign(document, path, value)

        config = AppConfig.model_validate(document)
        _check_runtime_rules(config)
        logger.info(
            "config.loaded yaml_path=%s env_keys=%s cli_keys=%s chunk_mode=%s comment_length_cap=%s dry_run=%s",
            request.yaml_path,
            ",".join(sorted(_dotted(p) for p in env_overrides)) or "-",
            ",".join(sorted(_dotted(p) for p in cli_overrides)) or "-",
            config.ai.chunk_mode,
            config.pipeline.comment_length_cap,
            config.app.dry_run,
        )
        return config
