import logging
import time

import requests

from ollama_desk.catalog import FetchRequest, LocalModel, ModelInfo
from ollama_desk.fetcher import ModelFetcher
from ollama_desk.sessions import Session, SessionDirectory

from conftest import FakeClient


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def make_fetcher(client, clock=None):
    return ModelFetcher(client, start=False, clock=clock or FakeClock(), retry_interval=2.0)


def test_catalog_result_selects_best_model_for_unset_sessions(catalog):
    client = FakeClient(models=catalog)
    fetcher = make_fetcher(client)
    chosen = Session()
    chosen.picker.select(catalog[0])
    directory = SessionDirectory(sessions=[Session(), chosen])

    fetcher.request(FetchRequest.catalog())
    assert fetcher.process_next()
    assert fetcher.drain(directory) == 1

    assert fetcher.catalog == catalog
    assert directory.sessions[0].picker.selected.name == "nous-hermes2:latest"
    assert chosen.picker.selected.name == "gemma:latest"


def test_duplicate_requests_are_dropped_while_in_flight(catalog):
    info = ModelInfo(license="Apache 2.0")
    client = FakeClient(models=catalog, infos={"gemma:latest": info})
    fetcher = make_fetcher(client)
    session = Session()
    session.picker.select(catalog[0])
    directory = SessionDirectory(sessions=[session])

    for _ in range(5):
        session.picker.show(catalog, fetcher.request)
    assert fetcher.is_in_flight(FetchRequest.model_info("gemma:latest"))
    assert fetcher.process_next()
    assert not fetcher.process_next()

    session.picker.show(catalog, fetcher.request)
    assert not fetcher.process_next()

    fetcher.drain(directory)
    assert client.show_calls == ["gemma:latest"]
    assert session.picker.info is info
    assert not fetcher.is_in_flight(FetchRequest.model_info("gemma:latest"))


def test_late_info_for_previous_model_is_ignored(catalog):
    client = FakeClient(infos={"gemma:latest": ModelInfo(license="MIT")})
    fetcher = make_fetcher(client)
    session = Session()
    session.picker.select(catalog[0])
    directory = SessionDirectory(sessions=[session])

    session.picker.show(catalog, fetcher.request)
    fetcher.process_next()
    session.picker.select(catalog[1])
    fetcher.drain(directory)

    assert session.picker.selected.name == "nous-hermes2:latest"
    assert session.picker.info is None


def test_failed_request_waits_before_retry(caplog):
    clock = FakeClock()
    client = FakeClient(error=requests.ConnectionError("connection refused"))
    fetcher = make_fetcher(client, clock)
    directory = SessionDirectory()

    fetcher.request(FetchRequest.catalog())
    fetcher.process_next()
    with caplog.at_level(logging.WARNING):
        fetcher.drain(directory)

    assert "connection refused" in caplog.text
    assert fetcher.catalog == []

    fetcher.request(FetchRequest.catalog())
    assert not fetcher.process_next()

    clock.now += 2.5
    fetcher.request(FetchRequest.catalog())
    assert fetcher.process_next()
    assert client.list_calls == 2


def test_failed_refresh_keeps_previous_catalog(catalog):
    client = FakeClient(models=catalog)
    fetcher = make_fetcher(client)
    directory = SessionDirectory()
    fetcher.request(FetchRequest.catalog())
    fetcher.process_next()
    fetcher.drain(directory)

    client.error = requests.Timeout("slow")
    fetcher.request(FetchRequest.catalog())
    fetcher.process_next()
    fetcher.drain(directory)

    assert fetcher.catalog == catalog


def test_worker_thread_serves_requests(catalog):
    client = FakeClient(models=[LocalModel("gemma:latest", "", 1)])
    fetcher = ModelFetcher(client)
    try:
        fetcher.request(FetchRequest.catalog())
        directory = SessionDirectory()
        for _ in range(200):
            if fetcher.drain(directory):
                break
            time.sleep(0.01)
    finally:
        fetcher.close()

    assert fetcher.catalog == [LocalModel("gemma:latest", "", 1)]
