"""
The sync engine: loaders, schema-evolving writer, connectors, catalog and jobs.

Modules:
    openapi: Record schema helpers (reference resolution, primary key inference)
    writer: DDL synchronization and batched upsert into per-connector schemas
    connector: Connect and load cycles for one configured source
    catalog: Bundled and registered connector configs, status projections
    jobs: Persisted, resumable load jobs with stale-job cleanup
    scheduler: APScheduler loop running job cleanup
    tool: Agent-facing list / ask_to_connect / load_data surface

Subpackages:
    loaders: Loader contract, registry and the SQL, Google API and Plaid loaders
    configs: Bundled connector configs (Gmail, Google Calendar, Plaid)

Architecture:
    A load pass is a loop of Loader.fetch calls. Each FetchBatch carries the
    checkpoint that is valid once its records are written, so a pass cut
    short by its time budget resumes exactly where it stopped:

    1. Prepare - evolve every resource table toward its schema
    2. Fetch - page through the source, bounded by the job's time budget
    3. Write - drop records without a primary key, upsert the rest
    4. Checkpoint - persist the batch's sync context before the next page

Usage:
    from connectors.catalog import Catalog
    from connectors.jobs import DataJobScheduler

Example:
    scheduler = DataJobScheduler()
    job = await scheduler.create("google_calendar")
    result = await scheduler.run(job.id)

    # Out of time: the job is still running and must be run again
    if result.next_job_ids:
        await scheduler.run(result.next_job_ids[0])
"""

__all__ = [
    "Catalog",
    "Connector",
    "DataWriter",
    "DataJobScheduler",
    "CleanupScheduler",
    "DataConnectorTool",
]
