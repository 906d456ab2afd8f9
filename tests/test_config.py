"""
Unit tests for the configuration surface, errors and logging setup.
"""

import logging

import pytest

from trialbayes.config import EngineConfig, SamplerConfig, load_config
from trialbayes.errors import ConfigurationError, FatalSamplerError, ValidationError
from trialbayes.logging_utils import configure_logging, get_logger


class TestEngineConfig:
    """Validated engine settings."""

    def test_defaults(self) -> None:
        config = EngineConfig()
        assert config.sampler.chains == 4
        assert config.sampler.draws == 1000
        assert config.convergence.rhat_threshold == 1.1
        assert config.convergence.min_ess == 100.0
        assert config.decision.ci_level == 0.95
        assert config.decision.thresholds == [0.0]
        assert config.subgroups.min_partition_size == 10

    def test_from_mapping(self) -> None:
        config = EngineConfig.from_mapping(
            {"sampler": {"chains": 2, "seed": 99}, "decision": {"thresholds": [2, 0, 2]}}
        )
        assert config.sampler.chains == 2
        assert config.sampler.seed == 99
        assert config.sampler.draws == 1000
        assert config.decision.thresholds == [0.0, 2.0]

    def test_from_none(self) -> None:
        assert EngineConfig.from_mapping(None) == EngineConfig()

    @pytest.mark.parametrize(
        "data",
        [
            {"sampler": {"chains": 0}},
            {"sampler": {"draws": 2}},
            {"convergence": {"rhat_threshold": 1.0}},
            {"decision": {"ci_level": 1.0}},
            {"sampler": {"target_acceptance": 0.99}},
            {"sampler": {"unknown": 1}},
            {"plotting": {}},
        ],
    )
    def test_invalid(self, data) -> None:
        with pytest.raises(ConfigurationError):
            EngineConfig.from_mapping(data)

    def test_frozen(self) -> None:
        config = SamplerConfig()
        with pytest.raises(Exception):
            config.chains = 8


class TestLoadConfig:
    """YAML configuration files."""

    def test_load(self, tmp_path) -> None:
        path = tmp_path / "engine.yaml"
        path.write_text(
            "sampler:\n  chains: 3\n  warmup: 500\n"
            "decision:\n  ci_level: 0.9\n  thresholds: [0.0, 1.0]\n"
        )
        config = load_config(path)
        assert config.sampler.chains == 3
        assert config.sampler.warmup == 500
        assert config.decision.thresholds == [0.0, 1.0]

    def test_empty_file_gives_defaults(self, tmp_path) -> None:
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(path) == EngineConfig()

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(ConfigurationError, match="Cannot read"):
            load_config(tmp_path / "absent.yaml")

    def test_not_a_mapping(self, tmp_path) -> None:
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ConfigurationError, match="mapping"):
            load_config(path)


class TestErrors:
    """Messages carry their location."""

    def test_validation_error_location(self) -> None:
        error = ValidationError("Survival time must be > 0", row=12, column="time")
        assert error.row == 12
        assert "row=12" in str(error) and "column='time'" in str(error)

    def test_fatal_sampler_error_chain(self) -> None:
        error = FatalSamplerError("timed out", chain=3)
        assert error.chain == 3
        assert str(error) == "chain 3: timed out"


class TestLogging:
    """Package logger setup."""

    def test_configure_is_idempotent(self) -> None:
        logger = configure_logging("DEBUG")
        n_handlers = len(logger.handlers)
        configure_logging("WARNING")
        assert len(logger.handlers) == n_handlers
        assert logger.level == logging.WARNING

    def test_module_loggers_are_children(self) -> None:
        get_logger("trialbayes")
        assert get_logger("trialbayes.pipeline").parent.name == "trialbayes"
