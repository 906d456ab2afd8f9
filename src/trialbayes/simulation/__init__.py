"""
Synthetic trial data for recovery and calibration checks.

**Usage:**
```python
from trialbayes.simulation import TrialSimulator

sim = TrialSimulator(seed=42)
trial = sim.generate_trial(n_patients=200, treatment_effect=1.7)
biomarker = sim.generate_biomarker(trial)
survival = sim.generate_survival(n_patients=300, log_hazard_ratio=-0.5)
```
"""

from trialbayes.simulation.simulator import TIMEPOINTS, TrialSimulator

__all__ = [
    "TrialSimulator",
    "TIMEPOINTS",
]
