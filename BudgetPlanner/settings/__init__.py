"""
Settings package: configuration API and schema validation.

This package provides:

- :mod:`BudgetPlanner.settings.lib` – Sync settings management, application paths and schema validation.
"""
