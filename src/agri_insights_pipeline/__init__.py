from __future__ import annotations

"""
agri_insights_pipeline

Batch job that loads the raw crop/climate CSV, validates and cleans it,
computes the grouped averages behind the rainfall, temperature, humidity
and yield dashboards, and exports them (locally, to GCS or to BigQuery).
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
