"""
UI package: the seam between the sync engine and the presentation layer.

This package provides:

- :mod:`BudgetPlanner.ui.actions` – Application-wide Qt signals and the user-notification sink.
"""
