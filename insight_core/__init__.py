"""Core (UI-agnostic) dataset intelligence logic.

This package contains:
- ingestion (CSV / XLSX / JSON -> raw rows)
- schema inference and row normalization
- filters, chart selection and aggregation
- cross-view highlight resolution
- chart helpers (Altair -> Vega-Lite spec dict)
"""
