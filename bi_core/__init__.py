"""Core (UI-agnostic) audit dashboard logic.

This package contains:
- file ingestion and schema discovery (CSV/XLSX -> rows)
- the session-scoped dataset collection
- statistics, correlation and categorical aggregation
- the advisory engine and audit orchestration
- chart helpers (Altair -> Vega-Lite spec dict) and report export
"""
