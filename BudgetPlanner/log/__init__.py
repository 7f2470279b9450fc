"""
Logging subsystem for BudgetPlanner.

Modules:

- :mod:`BudgetPlanner.log.log` – Root logger setup, Qt message bridge and the in-memory log tank.
"""
