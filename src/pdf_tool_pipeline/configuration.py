from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf

from .models import PipelineSettings, ToolConfig

# Load environment variables from .env file
load_dotenv()

CONFIG_PATH = Path(__file__).resolve().parent / "config" / "defaults.yaml"

# Environment variable -> dotted config key
ENV_OVERRIDES: Dict[str, str] = {
    "PDF_WORKER_URL": "api.worker_url",
    "PDF_TOOL_API_URL": "api.base_url",
    "PDF_TOOL_DOWNLOAD_DIR": "downloads.directory",
}


@lru_cache(maxsize=1)
def _load_default_config() -> DictConfig:
    if not CONFIG_PATH.exists():  # pragma: no cover - broken installation
        raise FileNotFoundError(f"Default config not found at {CONFIG_PATH}")
    return OmegaConf.load(CONFIG_PATH)  # type: ignore[return-value]


def get_default_config_container(resolve: bool = False) -> Dict[str, Any]:
    config = _load_default_config()
    return OmegaConf.to_container(config, resolve=resolve, enum_to_str=True)  # type: ignore[return-value]


def _environment_overrides() -> DictConfig:
    env_config = OmegaConf.create({})
    for name, key in ENV_OVERRIDES.items():
        value = os.environ.get(name)
        if value:
            OmegaConf.update(env_config, key, value)
    return env_config


def make_runtime_config(overrides: Optional[Dict[str, Any]] = None, *, use_env: bool = True) -> DictConfig:
    base_container = OmegaConf.to_container(_load_default_config(), resolve=False)
    base = OmegaConf.create(base_container)
    OmegaConf.set_struct(base, True)
    # Tools stay open so callers can register new ones through overrides
    OmegaConf.set_struct(base.tools, False)

    layers = [base]
    if use_env:
        layers.append(_environment_overrides())
    if overrides:
        layers.append(OmegaConf.create(overrides))

    merged = OmegaConf.merge(*layers) if len(layers) > 1 else base
    return DictConfig(merged)


def build_settings(config: Optional[DictConfig] = None) -> PipelineSettings:
    config = config if config is not None else make_runtime_config()
    container: Dict[str, Any] = OmegaConf.to_container(config, resolve=True, enum_to_str=True)  # type: ignore[assignment]
    tools = {tool_id: {**(values or {}), "tool_id": tool_id} for tool_id, values in (container.get("tools") or {}).items()}
    return PipelineSettings.model_validate({**container, "tools": tools})


def load_settings(overrides: Optional[Dict[str, Any]] = None, *, use_env: bool = True) -> PipelineSettings:
    return build_settings(make_runtime_config(overrides, use_env=use_env))


def get_tool_config(tool_id: str, settings: Optional[PipelineSettings] = None) -> ToolConfig:
    settings = settings or load_settings()
    try:
        return settings.tools[tool_id]
    except KeyError:
        raise KeyError(f"Unknown tool '{tool_id}'") from None
