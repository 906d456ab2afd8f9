"""
Engine configuration surface.

Recognized options: number of chains, draws per chain, warm-up length,
master seed, R-hat threshold, minimum effective sample size, credible-interval
level, decision thresholds and the minimum partition size used to flag
low-powered subgroups.
"""

from pathlib import Path
from typing import Any, List, Mapping, Optional, Union

import pydantic
import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from trialbayes.errors import ConfigurationError


class SamplerConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    chains: int = Field(4, ge=1, description="Independent Markov chains per fit")
    draws: int = Field(1000, ge=4, description="Retained post-warm-up draws per chain")
    warmup: int = Field(1000, ge=0, description="Adaptation steps per chain (discarded)")
    thin: int = Field(5, ge=1, description="Kernel steps per retained draw")
    seed: int = Field(20240101, ge=0, description="Master seed")
    max_workers: Optional[int] = Field(None, ge=1, description="Worker pool size")
    chain_timeout: Optional[float] = Field(None, gt=0, description="Seconds per chain")
    target_acceptance: Optional[float] = Field(
        None, gt=0.05, lt=0.95, description="Warm-up acceptance target (auto by dimension if None)"
    )
    max_init_attempts: int = Field(100, ge=1)
    init_radius: float = Field(1.0, ge=0.0, description="Uniform jitter around the initial point")
    optimize_init: bool = Field(True, description="Quasi-Newton refinement of the start")


class ConvergenceConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    rhat_threshold: float = Field(1.1, gt=1.0)
    min_ess: float = Field(100.0, ge=0.0)


class DecisionConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    ci_level: float = Field(0.95, gt=0.0, lt=1.0)
    thresholds: List[float] = Field(default_factory=lambda: [0.0])

    @field_validator("thresholds")
    @classmethod
    def sorted_unique(cls, v: List[float]) -> List[float]:
        return sorted(set(float(t) for t in v))


class SubgroupConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    min_partition_size: int = Field(10, ge=0)


class EngineConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    sampler: SamplerConfig = Field(default_factory=SamplerConfig)
    convergence: ConvergenceConfig = Field(default_factory=ConvergenceConfig)
    decision: DecisionConfig = Field(default_factory=DecisionConfig)
    subgroups: SubgroupConfig = Field(default_factory=SubgroupConfig)

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "EngineConfig":
        """Validate a nested mapping, reporting failures as ConfigurationError."""
        try:
            return cls.model_validate(dict(data or {}))
        except pydantic.ValidationError as e:
            raise ConfigurationError(f"Invalid engine configuration: {e}") from e


def load_config(path: Union[str, Path]) -> EngineConfig:
    """Read an EngineConfig from a YAML file."""
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read configuration {path}: {e}") from e

    if data is not None and not isinstance(data, Mapping):
        raise ConfigurationError(f"Configuration {path} must be a mapping")
    return EngineConfig.from_mapping(data)
