"""Load pipeline configs from Python references or JSON files."""

from __future__ import annotations

from dataclasses import asdict
import importlib
import importlib.util
from pathlib import Path
from types import ModuleType
from typing import Any

from sluice.config.schema import PipelineConfig, PipelineOptions, StageSpec
from sluice.storage.reports import atomic_write_json, read_json


def _load_module(module_ref: str) -> ModuleType:
    path_candidate = Path(module_ref).expanduser()
    if path_candidate.exists():
        module_name = f"_sluice_cfg_{path_candidate.stem}"
        spec = importlib.util.spec_from_file_location(module_name, path_candidate)
        if spec is None or spec.loader is None:
            raise RuntimeError(f"Could not load module from path: {path_candidate}")
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        return module
    return importlib.import_module(module_ref)


def _resolve_attr(obj: Any, attr_path: str) -> Any:
    value = obj
    for part in attr_path.split("."):
        value = getattr(value, part)
    return value


def load_object(reference: str) -> Any:
    """Load object by `module_or_path:attribute` reference."""

    if ":" not in reference:
        raise ValueError("Config reference must be in form 'module_or_path:attribute'.")
    module_ref, attr = reference.rsplit(":", maxsplit=1)
    module = _load_module(module_ref)
    return _resolve_attr(module, attr)


def pipeline_config_from_dict(payload: dict[str, Any]) -> PipelineConfig:
    """Reconstruct a PipelineConfig from a plain dictionary."""

    if not isinstance(payload, dict):
        raise TypeError(f"Pipeline config must be an object, got {type(payload).__name__}.")
    options = payload.get("options", {})
    stages: list[StageSpec] = []
    for item in payload.get("stages", []):
        if isinstance(item, str):
            stages.append(StageSpec(name=item))
        elif isinstance(item, dict) and "name" in item:
            stages.append(StageSpec(name=str(item["name"]), params=dict(item.get("params", {}))))
        else:
            raise TypeError(f"Invalid stage entry in config: {item!r}")
    return PipelineConfig(
        options=PipelineOptions(**options),
        stages=stages,
        name=str(payload.get("name", "pipeline")),
    )


def pipeline_config_to_dict(config: PipelineConfig) -> dict[str, Any]:
    """Plain-dict form of a config, suitable for JSON."""

    return asdict(config)


def load_pipeline_config(config_ref: str | None) -> PipelineConfig:
    """Load a PipelineConfig from a JSON path or Python reference, or default."""

    if config_ref is None:
        return PipelineConfig()

    if config_ref.endswith(".json"):
        path = Path(config_ref).expanduser()
        if not path.exists():
            raise FileNotFoundError(f"Config file does not exist: {path}")
        return pipeline_config_from_dict(read_json(path))

    loaded = load_object(config_ref)
    if not isinstance(loaded, PipelineConfig):
        type_name = type(loaded).__name__
        raise TypeError(
            f"Config reference must resolve to PipelineConfig, got {type_name}."
        )
    return loaded


def save_pipeline_config(path: Path, config: PipelineConfig) -> None:
    """Write a config as JSON so it can be reloaded with `load_pipeline_config`."""

    atomic_write_json(path, pipeline_config_to_dict(config))
