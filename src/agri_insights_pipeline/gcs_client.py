from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Tuple

from google.api_core.exceptions import GoogleAPIError
from google.cloud import storage
from google.cloud.exceptions import NotFound

from .exceptions import DataLoadError

logger = logging.getLogger(__name__)

GCS_SCHEME = "gs://"


def is_gcs_uri(value: object) -> bool:
    return isinstance(value, str) and value.startswith(GCS_SCHEME)


def parse_gcs_uri(uri: str) -> Tuple[str, str]:
    """Split `gs://bucket/path/to/blob.csv` into (bucket, blob name)."""
    if not is_gcs_uri(uri):
        raise ValueError(f"Not a GCS URI: {uri!r}")
    bucket_name, _, blob_name = uri[len(GCS_SCHEME) :].partition("/")
    if not bucket_name or not blob_name:
        raise ValueError(f"GCS URI must look like gs://bucket/blob, got {uri!r}")
    return bucket_name, blob_name


def _debug_list_sibling_blobs(
    bucket: storage.Bucket,
    blob_name: str,
    max_results: int = 20,
) -> None:
    """
    Debug helper: when an expected object is missing, log the objects that sit
    next to it (same "directory" prefix) so a typo in the URI is easy to spot.
    """
    prefix = blob_name.rpartition("/")[0]
    if prefix:
        prefix += "/"

    logger.info(
        "Listing up to %d objects in bucket %s with prefix '%s'...",
        max_results,
        bucket.name,
        prefix,
    )

    names: list[str] = []
    try:
        for blob in bucket.list_blobs(prefix=prefix, max_results=max_results):
            names.append(blob.name)
    except GoogleAPIError as exc:
        logger.warning(
            "Failed to list objects in bucket %s with prefix '%s': %s",
            bucket.name,
            prefix,
            exc,
        )
        return

    if not names:
        logger.info("No objects found in bucket %s with prefix '%s'.", bucket.name, prefix)
        return

    for name in sorted(names):
        logger.info("  - gs://%s/%s", bucket.name, name)


def download_text(uri: str, project_id: Optional[str] = None, encoding: str = "utf-8") -> str:
    """
    Download a text object (the raw CSV) from GCS.

    Raises DataLoadError when the object does not exist or the download fails.
    """
    bucket_name, blob_name = parse_gcs_uri(uri)
    logger.info("Downloading %s", uri)

    storage_client = storage.Client(project=project_id)
    bucket = storage_client.bucket(bucket_name)
    blob = bucket.blob(blob_name)

    try:
        data = blob.download_as_bytes()
    except NotFound as exc:
        logger.warning("Source object not found: %s", uri)
        _debug_list_sibling_blobs(bucket, blob_name)
        raise DataLoadError(f"Source object not found: {uri}") from exc
    except GoogleAPIError as exc:
        msg = f"Failed to download {uri}"
        logger.error(msg, exc_info=True)
        raise DataLoadError(msg) from exc

    try:
        text = data.decode(encoding)
    except UnicodeDecodeError as exc:
        msg = f"Object {uri} is not valid {encoding} text"
        logger.error(msg)
        raise DataLoadError(msg) from exc

    logger.info("Downloaded %d bytes from %s", len(data), uri)
    return text


def upload_file(local_path: Path, uri: str, project_id: Optional[str] = None) -> str:
    """Stage a local file into GCS at `uri` (overwriting) and return the URI."""
    bucket_name, blob_name = parse_gcs_uri(uri)
    if not local_path.is_file():
        raise DataLoadError(f"Cannot stage {local_path}: file does not exist")

    logger.info("Uploading %s to %s", local_path, uri)

    storage_client = storage.Client(project=project_id)
    blob = storage_client.bucket(bucket_name).blob(blob_name)

    try:
        blob.upload_from_filename(str(local_path), content_type="text/csv")
    except GoogleAPIError as exc:
        msg = f"Failed to upload {local_path} to {uri}"
        logger.error(msg, exc_info=True)
        raise DataLoadError(msg) from exc

    logger.info("Staged raw file at %s", uri)
    return uri
