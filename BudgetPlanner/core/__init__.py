"""
Core package: the offline-first synchronization engine.

Modules:

- :mod:`BudgetPlanner.core.database` – Local sqlite store of JSON record collections and sync metadata.
- :mod:`BudgetPlanner.core.models` – Domain entities and the sync operation model.
- :mod:`BudgetPlanner.core.queue` – Durable queue of pending local mutations.
- :mod:`BudgetPlanner.core.retry` – Exponential backoff and eligibility policy.
- :mod:`BudgetPlanner.core.push` – Delivers queued mutations to the server.
- :mod:`BudgetPlanner.core.pull` – Fetches server changes and reconciles them locally.
- :mod:`BudgetPlanner.core.resolver` – Last-write-wins conflict resolution.
- :mod:`BudgetPlanner.core.orchestrator` – Periodic, connectivity-driven and manual sync cycles.
- :mod:`BudgetPlanner.core.client` – Authenticated HTTP client and the sync API.
- :mod:`BudgetPlanner.core.connectivity` – Online/offline signal.
- :mod:`BudgetPlanner.core.state` – Sync status indicator and last-sync stamp.
- :mod:`BudgetPlanner.core.stores` – Domain record stores writing locally and enqueueing changes.
- :mod:`BudgetPlanner.core.idmap` – Re-keying of placeholder ids to server ids.
"""
