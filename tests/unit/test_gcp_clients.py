from pathlib import Path

import pandas as pd
import pytest
from google.api_core.exceptions import GoogleAPIError
from google.cloud.exceptions import NotFound

from agri_insights_pipeline.bq_client import write_tables
from agri_insights_pipeline.exceptions import DataLoadError
from agri_insights_pipeline.gcs_client import download_text, parse_gcs_uri, upload_file


class FakeBlob:
    def __init__(self, name, store):
        self.name = name
        self.store = store

    def download_as_bytes(self):
        if self.name not in self.store:
            raise NotFound(f"{self.name} not found")
        return self.store[self.name]

    def upload_from_filename(self, filename, content_type=None):
        self.store[self.name] = Path(filename).read_bytes()


class FakeBucket:
    def __init__(self, name, store):
        self.name = name
        self.store = store

    def blob(self, name):
        return FakeBlob(name, self.store)

    def list_blobs(self, prefix="", max_results=None):
        return [FakeBlob(name, self.store) for name in self.store if name.startswith(prefix)]


def _fake_storage(monkeypatch, store):
    class FakeStorageClient:
        def __init__(self, project=None):
            self.project = project

        def bucket(self, name):
            return FakeBucket(name, store)

    monkeypatch.setattr("agri_insights_pipeline.gcs_client.storage.Client", FakeStorageClient)


def test_parse_gcs_uri():
    assert parse_gcs_uri("gs://bucket/raw/crops.csv") == ("bucket", "raw/crops.csv")
    with pytest.raises(ValueError):
        parse_gcs_uri("gs://bucket-only")
    with pytest.raises(ValueError):
        parse_gcs_uri("/local/crops.csv")


def test_download_text(monkeypatch):
    _fake_storage(monkeypatch, {"raw/crops.csv": b"Year,Location\n"})

    assert download_text("gs://bucket/raw/crops.csv") == "Year,Location\n"


def test_download_missing_object_raises(monkeypatch):
    _fake_storage(monkeypatch, {"raw/other.csv": b""})

    with pytest.raises(DataLoadError, match="not found"):
        download_text("gs://bucket/raw/crops.csv")


def test_upload_file(monkeypatch, tmp_path: Path):
    store = {}
    _fake_storage(monkeypatch, store)
    local = tmp_path / "crops.csv"
    local.write_text("Year\n2018\n", encoding="utf-8")

    uri = upload_file(local, "gs://bucket/staging/crops.csv", project_id="dummy-project")

    assert uri == "gs://bucket/staging/crops.csv"
    assert store == {"staging/crops.csv": b"Year\n2018\n"}


def test_upload_missing_local_file_raises(tmp_path: Path):
    with pytest.raises(DataLoadError):
        upload_file(tmp_path / "missing.csv", "gs://bucket/crops.csv")


class FakeJob:
    def __init__(self, error=None):
        self.error = error

    def result(self):
        if self.error is not None:
            raise self.error


def _fake_bigquery(monkeypatch, loads, error=None):
    class FakeBigQueryClient:
        def __init__(self, project=None):
            self.project = project

        def load_table_from_dataframe(self, df, table, job_config=None):
            loads.append((table, len(df), job_config.write_disposition))
            return FakeJob(error)

    monkeypatch.setattr("agri_insights_pipeline.bq_client.bigquery.Client", FakeBigQueryClient)


def test_write_tables_truncates(monkeypatch):
    loads = []
    _fake_bigquery(monkeypatch, loads)
    tables = {
        "avg_rainfall_by_year": pd.DataFrame({"year": [2018], "metric": ["rainfall"], "average": [200.0]}),
    }

    written = write_tables("dummy-project", "agri", tables)

    assert written == ["dummy-project.agri.avg_rainfall_by_year"]
    assert loads == [("dummy-project.agri.avg_rainfall_by_year", 1, "WRITE_TRUNCATE")]


def test_write_tables_wraps_api_errors(monkeypatch):
    _fake_bigquery(monkeypatch, [], error=GoogleAPIError("quota exceeded"))

    with pytest.raises(DataLoadError):
        write_tables("dummy-project", "agri", {"t": pd.DataFrame({"a": [1]})})
