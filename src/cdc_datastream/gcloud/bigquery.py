"""BigQuery dataset setup for the stream's destination."""

from __future__ import annotations

import structlog

logger = structlog.get_logger()


def dataset_id_for(database: str, prefix: str = "datastream_") -> str:
    """BigQuery dataset name for *database* (hyphens are not allowed)."""
    return prefix + database.replace("-", "_")


def ensure_dataset(project: str, dataset_id: str, location: str) -> bool:
    """Create the dataset unless it already exists.

    Returns ``True`` when a dataset was created.  Blocking; call it from an
    executor inside async code.
    """
    from google.api_core.exceptions import Conflict
    from google.cloud import bigquery

    client = bigquery.Client(project=project)
    try:
        existing = {ds.dataset_id for ds in client.list_datasets()}
        if dataset_id in existing:
            logger.info("bigquery.dataset_exists", dataset=dataset_id)
            return False

        dataset = bigquery.Dataset(f"{project}.{dataset_id}")
        dataset.location = location
        try:
            client.create_dataset(dataset)
        except Conflict:
            logger.info("bigquery.dataset_exists", dataset=dataset_id)
            return False
        logger.info("bigquery.dataset_created", dataset=dataset_id, location=location)
        return True
    finally:
        client.close()
