from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import yaml

from .errors import AIChainError, ConfigError
from .pipeline.base import Pipeline, PipelineStep, error_strategy_from_dict
from .pipeline.parser import parse
from .pipeline.transform import TransformSpec


@dataclass(frozen=True)
class PipelineDefinition:
    name: str
    pipeline: Pipeline
    description: str = ""


@dataclass(frozen=True)
class PipelinesConfig:
    pipelines: Dict[str, PipelineDefinition]
    # provider id -> {"api_key": ...} or {"session_token": ...}
    credentials: Dict[str, Dict[str, str]]

    def get(self, name: str) -> PipelineDefinition:
        try:
            return self.pipelines[name]
        except KeyError:
            raise KeyError(
                f"Unknown pipeline: '{name}'. Defined pipelines are: {sorted(self.pipelines)}"
            ) from None


def _load_yaml(path: str) -> Dict[str, Any]:
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(path, "top level must be a mapping")
    return data


def _parse_transform(data: Any) -> Optional[TransformSpec]:
    if data is None:
        return None
    if isinstance(data, str):
        return TransformSpec.of(data)
    params = dict(data)
    name = params.pop("name")
    return TransformSpec.of(name, **params)


def _parse_steps(data: List[Dict[str, Any]]) -> List[PipelineStep]:
    return [
        PipelineStep(
            provider_id=item["provider"],
            action=item["action"],
            transform=_parse_transform(item.get("transform")),
            step_context=item.get("context"),
        )
        for item in data
    ]


def _parse_pipeline(path: str, name: str, data: Dict[str, Any]) -> PipelineDefinition:
    try:
        strategy = error_strategy_from_dict(data.get("error_strategy"))
        if "chain" in data:
            pipeline = parse(data["chain"], strategy)
        elif "steps" in data:
            pipeline = Pipeline(tuple(_parse_steps(data["steps"])), strategy)
        else:
            raise ConfigError(path, f"pipeline '{name}' needs either 'chain' or 'steps'")
    except ConfigError:
        raise
    except (AIChainError, KeyError, TypeError, ValueError) as e:
        raise ConfigError(path, f"pipeline '{name}': {e}") from e

    return PipelineDefinition(
        name=name,
        pipeline=pipeline,
        description=data.get("description", ""),
    )


def _parse_credentials(path: str, data: Dict[str, Any]) -> Dict[str, Dict[str, str]]:
    credentials = {}
    for provider_id, values in data.items():
        if not isinstance(values, dict):
            raise ConfigError(path, f"credentials for '{provider_id}' must be a mapping")
        credentials[provider_id] = {key: str(value) for key, value in values.items()}
    return credentials


def load_pipelines_config(path: str) -> PipelinesConfig:
    """
    Load named pipelines (and optional provider credentials) from a YAML file.

    Example:
        pipelines:
          review:
            chain: "claude:design -> gemini:review"
            error_strategy: {type: continue_on_error}

    Raises:
        FileNotFoundError: `path` does not exist
        ConfigError: The file is malformed
    """
    data = _load_yaml(path)

    return PipelinesConfig(
        pipelines={
            name: _parse_pipeline(path, name, definition or {})
            for name, definition in (data.get("pipelines") or {}).items()
        },
        credentials=_parse_credentials(path, data.get("credentials") or {}),
    )
