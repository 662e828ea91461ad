import pytest
from fastapi.testclient import TestClient

from tif_service.conversion import ReadyState, StoreError
from tif_service.webapi import create_app

from .fakes import MISSING_ID, RECORD_ID, REMOVED_ID, CountingConverter, FakeConnection, FakeRecords


def _disposition(response) -> str:
    return response.headers["content-disposition"]


def test_health_reports_store_state(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "store": "CONNECTED"}


def test_lifespan_connects_then_disconnects(connection, records, converter, cache_dir):
    app = create_app(connection, records, converter, cache_dir=str(cache_dir))
    with TestClient(app):
        assert connection.ready_state is ReadyState.CONNECTED
    assert connection.ready_state is ReadyState.DISCONNECTED
    assert connection.connects == 1
    assert connection.disconnects == 1


def test_startup_fails_when_store_unreachable(records, converter, cache_dir):
    connection = FakeConnection(fail=StoreError("no servers"))
    app = create_app(connection, records, converter, cache_dir=str(cache_dir))
    with pytest.raises(StoreError):
        with TestClient(app):
            pass
    assert connection.ready_state is ReadyState.DISCONNECTED


def test_invalid_id_on_convert_route(client, converter):
    response = client.get("/xyz/png")
    assert response.status_code == 422
    assert set(response.json()) == {"message"}
    assert not converter.calls


def test_invalid_id_on_original_route(client):
    response = client.get("/" + "q" * 24)
    assert response.status_code == 422
    assert set(response.json()) == {"message"}


def test_invalid_type_yields_single_message(client):
    response = client.get(f"/{RECORD_ID}/gif")
    assert response.status_code == 422
    assert response.json() == {"message": '"type" must be one of [jpg, png]'}


def test_id_and_type_invalid_yield_two_messages(client):
    response = client.get("/xyz/gif")
    assert response.status_code == 422
    body = response.json()
    assert set(body) == {"messages"}
    assert len(body["messages"]) == 2
    assert all(set(m) == {"message"} for m in body["messages"])


def test_first_request_converts_and_caches(client, converter, cache_dir):
    response = client.get(f"/{RECORD_ID}/png")
    assert response.status_code == 200
    assert 'filename="aaaaaaaaaaaaaaaaaaaaaaaa.png"' in _disposition(response)
    assert response.content == b"converted:png"
    assert len(converter.calls) == 1
    assert (cache_dir / f"{RECORD_ID}.png").is_file()


def test_repeat_request_is_served_from_cache(client, converter):
    first = client.get(f"/{RECORD_ID}/png")
    second = client.get(f"/{RECORD_ID}/png")
    assert first.status_code == second.status_code == 200
    assert _disposition(first) == _disposition(second)
    assert len(converter.calls) == 1


def test_uppercase_type_is_normalized(client, converter, cache_dir):
    response = client.get(f"/{RECORD_ID}/JPG")
    assert response.status_code == 200
    assert 'filename="aaaaaaaaaaaaaaaaaaaaaaaa.jpg"' in _disposition(response)
    assert converter.calls[0][2] == "jpg"
    assert (cache_dir / f"{RECORD_ID}.jpg").is_file()


def test_each_format_is_cached_separately(client, converter):
    client.get(f"/{RECORD_ID}/png")
    client.get(f"/{RECORD_ID}/jpg")
    assert [c[2] for c in converter.calls] == ["png", "jpg"]


def test_removed_and_missing_records_are_indistinguishable(client, converter):
    for record_id in (REMOVED_ID, MISSING_ID):
        converted = client.get(f"/{record_id}/png")
        original = client.get(f"/{record_id}")
        assert converted.status_code == original.status_code == 404
        assert converted.content == original.content == b""
    assert not converter.calls


def test_original_is_byte_identical(client, source_tif, converter):
    response = client.get(f"/{RECORD_ID}")
    assert response.status_code == 200
    assert response.content == source_tif.read_bytes()
    assert 'filename="aaaaaaaaaaaaaaaaaaaaaaaa.tif"' in _disposition(response)
    assert not converter.calls


def test_original_with_missing_source_file_is_404(client, source_tif):
    source_tif.unlink()
    response = client.get(f"/{RECORD_ID}")
    assert response.status_code == 404
    assert response.content == b""


def test_conversion_failure_is_a_clean_500(connection, records, cache_dir):
    app = create_app(connection, records, CountingConverter(fail=True), cache_dir=str(cache_dir))
    with TestClient(app) as client:
        response = client.get(f"/{RECORD_ID}/png")
        assert response.status_code == 500
        assert response.json() == {"message": "conversion failed"}
        assert not (cache_dir / f"{RECORD_ID}.png").exists()
        # the process keeps serving
        assert client.get("/health").status_code == 200


def test_store_failure_is_a_clean_500(connection, converter, cache_dir):
    records = FakeRecords(error=StoreError("connection reset"))
    app = create_app(connection, records, converter, cache_dir=str(cache_dir))
    with TestClient(app) as client:
        response = client.get(f"/{RECORD_ID}")
        assert response.status_code == 500
        assert response.json() == {"message": "store unavailable"}


def test_rejected_params_never_reach_the_store(client, records):
    assert client.get("/xyz/png").status_code == 422
    assert client.get("/xyz/gif").status_code == 422
    assert client.get(f"/{RECORD_ID}/tif").status_code == 422
    assert client.get("/" + "q" * 24).status_code == 422
    assert records.lookups == 0


def test_health_is_not_treated_as_an_id(client, records):
    response = client.get("/health")
    assert response.status_code == 200
    assert records.lookups == 0


def test_mixed_case_id_shares_the_lowercase_cache_file(client, converter, cache_dir):
    upper = RECORD_ID.upper()
    first = client.get(f"/{upper}/png")
    second = client.get(f"/{RECORD_ID}/png")
    assert first.status_code == second.status_code == 200
    assert f'filename="{upper}.png"' in _disposition(first)
    assert (cache_dir / f"{RECORD_ID}.png").is_file()
    assert len(converter.calls) == 1
