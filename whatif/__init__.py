"""What-if retail scenario simulation.

- metrics: snapshot model, channel normalization, snapshot reader
- forecasting: parameter sets, defaults, projection engine, monthly trend
- scenarios: tenant-scoped scenario store and comparisons
- advisor: channel budget reallocation heuristic
- exports: CSV writers and Markdown reports
- api: service facade and Flask adapter
"""

__version__ = "0.1.0"
