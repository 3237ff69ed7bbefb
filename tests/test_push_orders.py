import io
import json
import urllib.error

import pytest

import push_orders as push


def order(i):
    return {
        "id": f"o{i}", "userId": "u1", "items": [], "total": 1,
        "grandTotal": 1, "paymentMethod": "cash",
    }


@pytest.fixture
def fake_server(mocker):
    """Stands in for the sync API; records every call."""
    calls = []

    def respond(url, payload=None, timeout=30):
        calls.append((url, payload))
        if url.endswith("/api/health"):
            return {"success": True, "message": "Server + DB running"}
        if url.endswith("/api/settings/sync"):
            return {"success": True}
        if url.endswith("/api/orders/sync"):
            return {"success": True, "count": len(payload["orders"])}
        raise AssertionError(f"unexpected url {url}")

    mocker.patch("push_orders._request", side_effect=respond)
    return calls


def test_orders_are_sent_in_batches(fake_server):
    orders = [order(i) for i in range(250)]

    synced = push.push_orders("http://pos.local/", orders, batch_size=100)

    assert synced == 250
    assert [len(p["orders"]) for _, p in fake_server] == [100, 100, 50]
    assert all(url == "http://pos.local/api/orders/sync" for url, _ in fake_server)


def test_empty_order_list_sends_nothing(fake_server):
    assert push.push_orders("http://pos.local", [], batch_size=10) == 0
    assert fake_server == []


def test_bad_batch_size():
    with pytest.raises(ValueError):
        push.push_orders("http://pos.local", [order(1)], batch_size=0)


def test_failed_batch_stops_upload(mocker):
    mocker.patch("push_orders._request", side_effect=[
        {"success": True, "count": 2},
        push.PushError("POST http://pos.local/api/orders/sync failed: 500"),
    ])

    with pytest.raises(push.PushError):
        push.push_orders("http://pos.local", [order(i) for i in range(6)], batch_size=2)
    assert push._request.call_count == 2


def test_load_export(tmp_path):
    path = tmp_path / "export.json"
    path.write_text(json.dumps({"orders": [order(1)], "settings": {"name": "Shop"}}))

    orders, settings = push.load_export(path)

    assert orders == [order(1)]
    assert settings == {"name": "Shop"}


def test_load_export_without_orders(tmp_path):
    path = tmp_path / "export.json"
    path.write_text(json.dumps({"settings": {"name": "Shop"}}))

    assert push.load_export(path) == ([], {"name": "Shop"})


def test_load_export_rejects_wrong_shape(tmp_path):
    path = tmp_path / "export.json"
    path.write_text(json.dumps([order(1)]))

    with pytest.raises(push.PushError):
        push.load_export(path)


def test_request_posts_json(mocker):
    urlopen = mocker.patch("push_orders.urllib.request.urlopen")
    urlopen.return_value.read.return_value = b'{"success": true, "count": 1}'

    result = push._request("http://pos.local/api/orders/sync", {"orders": [order(1)]})

    assert result == {"success": True, "count": 1}
    req = urlopen.call_args[0][0]
    assert req.get_method() == "POST"
    assert req.get_header("Content-type") == "application/json"
    assert json.loads(req.data) == {"orders": [order(1)]}


def test_request_turns_http_errors_into_push_errors(mocker):
    error = urllib.error.HTTPError(
        "http://pos.local/api/orders/sync", 500, "Internal Server Error",
        None, io.BytesIO(b'{"success": false}'),
    )
    mocker.patch("push_orders.urllib.request.urlopen", side_effect=error)

    with pytest.raises(push.PushError, match="500"):
        push._request("http://pos.local/api/orders/sync", {"orders": []})


def test_check_health_raises_when_unhealthy(mocker):
    mocker.patch("push_orders._request", return_value={
        "success": False, "message": "Database not connected",
    })

    with pytest.raises(push.PushError, match="Database not connected"):
        push.check_health("http://pos.local")


def test_main_push(tmp_path, fake_server, capsys):
    path = tmp_path / "export.json"
    path.write_text(json.dumps({
        "orders": [order(i) for i in range(5)],
        "settings": {"name": "Shop"},
    }))

    code = push.main(["push", "http://pos.local", str(path), "--batch-size", "2"])

    assert code == 0
    urls = [url for url, _ in fake_server]
    assert urls[0] == "http://pos.local/api/health"
    assert urls[1] == "http://pos.local/api/settings/sync"
    assert urls[2:] == ["http://pos.local/api/orders/sync"] * 3
    assert "orders: 5" in capsys.readouterr().out


def test_main_check(fake_server, capsys):
    assert push.main(["check", "http://pos.local"]) == 0
    assert "Server + DB running" in capsys.readouterr().out


def test_main_push_missing_file(tmp_path, fake_server):
    code = push.main(["push", "http://pos.local", str(tmp_path / "nope.json")])

    assert code == 1
    assert fake_server == []


def test_main_unknown_command(capsys):
    assert push.main(["sideways"]) == 1
    assert "Unknown command" in capsys.readouterr().out
