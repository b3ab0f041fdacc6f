"""
Pack Value Engine

Modules:
- database: bundle repository adapters (in-memory, SQLite) and storage
- pricing: iterative item price inference and the model cache
- grading: bundle value grades, comparable bundles, best deals
- trends: daily price series with outlier smoothing, market snapshots
- service: caller-facing facade
"""

__version__ = "0.1.0"
