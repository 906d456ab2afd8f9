"""
Model specifications: likelihood families, typed designs and priors.

**Families:**
- GaussianModel: y ~ Normal(Xβ, σ)
- RandomEffectsModel: longitudinal Gaussian with per-subject random
  intercept and slope (integrated out analytically)
- WeibullModel: right-censored Weibull survival, λ = exp(-η/α)

**Usage:**
```python
from trialbayes.models import DesignSpec, TreatmentIndicator, NumericCovariate, GaussianModel

design = DesignSpec([TreatmentIndicator("treatment"), NumericCovariate("age")])
model = GaussianModel(cohort, design, outcome="primary_outcome")
model.log_density(model.initial_point())
```
"""

from trialbayes.models.base import ModelSpec, Parameter, autoscaled_coefficient_priors
from trialbayes.models.design import (
    CategoricalCovariate,
    DesignMatrix,
    DesignSpec,
    Interaction,
    NumericCovariate,
    TimeCovariate,
    TreatmentIndicator,
)
from trialbayes.models.gaussian import GaussianModel
from trialbayes.models.mixed import RandomEffectsModel
from trialbayes.models.priors import (
    CORRELATION,
    POSITIVE,
    REAL,
    Exponential,
    Fixed,
    Gamma,
    HalfNormal,
    HalfStudentT,
    LKJCorr,
    Normal,
    Prior,
    StudentT,
    Uniform,
)
from trialbayes.models.weibull import WeibullModel

__all__ = [
    "ModelSpec",
    "Parameter",
    "autoscaled_coefficient_priors",
    # Design
    "DesignSpec",
    "DesignMatrix",
    "TreatmentIndicator",
    "NumericCovariate",
    "CategoricalCovariate",
    "TimeCovariate",
    "Interaction",
    # Families
    "GaussianModel",
    "RandomEffectsModel",
    "WeibullModel",
    # Priors
    "Prior",
    "Normal",
    "StudentT",
    "HalfNormal",
    "HalfStudentT",
    "Exponential",
    "Gamma",
    "LKJCorr",
    "Uniform",
    "Fixed",
    "REAL",
    "POSITIVE",
    "CORRELATION",
]
