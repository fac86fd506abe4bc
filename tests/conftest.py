"""Shared fixtures: a scripted BigQuery stand-in and a stubbed insight client."""

import pytest

from kpi_gateway import Settings, create_app
from kpi_gateway.warehouse import Warehouse


class FakeJob:
    def __init__(self, outcome):
        self.outcome = outcome
        self.max_results = None

    def result(self, max_results=None):
        self.max_results = max_results
        if isinstance(self.outcome, Exception):
            raise self.outcome
        rows = list(self.outcome)
        return rows[:max_results] if max_results else rows


class FakeBigQuery:
    """Returns queued outcomes (row lists or exceptions) in submission order."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []
        self.jobs = []

    def query(self, sql, job_config=None, location=None):
        self.calls.append({"sql": sql, "job_config": job_config, "location": location})
        job = FakeJob(self.outcomes.pop(0) if self.outcomes else [])
        self.jobs.append(job)
        return job

    def params(self, index=0):
        config = self.calls[index]["job_config"]
        return {p.name: p.value for p in config.query_parameters}


class StubInsights:
    def __init__(self, text="Conversion is healthy.", error=None):
        self.text = text
        self.error = error
        self.tenants = []

    def tenant_insight(self, tenant_id):
        self.tenants.append(tenant_id)
        if self.error:
            raise self.error
        return self.text


@pytest.fixture
def settings():
    return Settings(version="rev-test")


@pytest.fixture
def bq():
    return FakeBigQuery()


@pytest.fixture
def insights():
    return StubInsights()


@pytest.fixture
def app(settings, bq, insights):
    return create_app(settings, Warehouse(settings, client=bq), insights)


@pytest.fixture
def client(app):
    return app.test_client()
