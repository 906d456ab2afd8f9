"""
Bayesian hierarchical inference for clinical-trial cohorts.

Fits Gaussian, longitudinal random-effects and right-censored Weibull models
by MCMC and reports posterior decision metrics overall and per subgroup.

**Usage:**
```python
from trialbayes import (
    Cohort, DesignSpec, EngineConfig, GaussianModel, Partition,
    SubgroupOrchestrator, TreatmentIndicator, analyze,
)

cohort = Cohort(trial, subject_column="patient_id")
model = GaussianModel(cohort, DesignSpec([TreatmentIndicator()]), outcome="primary_outcome")
config = EngineConfig.from_mapping({"decision": {"thresholds": [0.0, 1.0]}})

summary = analyze(model, "treatment", config)
summary.probability_above(1.0)

results = SubgroupOrchestrator(model.rebind, "treatment", config).run(
    cohort, [Partition.equals("sex", "Male"), Partition.equals("sex", "Female")]
)
```
"""

from trialbayes.cohort import Cohort, SubjectIndex
from trialbayes.config import (
    ConvergenceConfig,
    DecisionConfig,
    EngineConfig,
    SamplerConfig,
    SubgroupConfig,
    load_config,
)
from trialbayes.errors import (
    ConfigurationError,
    ConvergenceWarning,
    FatalSamplerError,
    FitCancelledError,
    TrialBayesError,
    ValidationError,
)
from trialbayes.logging_utils import configure_logging, get_logger
from trialbayes.models import (
    CategoricalCovariate,
    DesignSpec,
    GaussianModel,
    Interaction,
    NumericCovariate,
    RandomEffectsModel,
    TimeCovariate,
    TreatmentIndicator,
    WeibullModel,
)
from trialbayes.pipeline import analyze, fit
from trialbayes.decision.metrics import EffectSummary, summarize
from trialbayes.decision.subgroups import (
    Partition,
    SubgroupOrchestrator,
    SubgroupResult,
    age_bands,
    results_frame,
)
from trialbayes.inference import AdaptiveMetropolisSampler, PosteriorDraws, PosteriorStore

__version__ = "0.1.0"

__all__ = [
    "Cohort",
    "SubjectIndex",
    # Configuration
    "EngineConfig",
    "SamplerConfig",
    "ConvergenceConfig",
    "DecisionConfig",
    "SubgroupConfig",
    "load_config",
    # Errors
    "TrialBayesError",
    "ValidationError",
    "ConfigurationError",
    "FatalSamplerError",
    "FitCancelledError",
    "ConvergenceWarning",
    "configure_logging",
    "get_logger",
    # Models
    "DesignSpec",
    "TreatmentIndicator",
    "NumericCovariate",
    "CategoricalCovariate",
    "TimeCovariate",
    "Interaction",
    "GaussianModel",
    "RandomEffectsModel",
    "WeibullModel",
    # Inference
    "AdaptiveMetropolisSampler",
    "PosteriorDraws",
    "PosteriorStore",
    "fit",
    "analyze",
    # Decision
    "EffectSummary",
    "summarize",
    "Partition",
    "SubgroupOrchestrator",
    "SubgroupResult",
    "age_bands",
    "results_frame",
]
