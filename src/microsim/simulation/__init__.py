"""
Path simulation for stitched Markov models.

**Usage:**
```python
from microsim.simulation.simulator import PathSimulator

model.precalculate_state_distributions(100)
sim = PathSimulator(model, random_seed=42)

paths = sim.simulate_paths(n_paths=1000, n_steps=100)
freqs = sim.empirical_distribution(paths)
states, percentiles = sim.simulate_percentile_path(n_steps=100)
```
"""

from microsim.simulation.simulator import PathSimulator

__all__ = [
    "PathSimulator",
]
