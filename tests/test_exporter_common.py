import logging
from unittest.mock import patch
from wsgiref.util import setup_testing_defaults

import pytest

from rbd_mirror_exporter import __version__
from rbd_mirror_exporter.config import ExporterConfig
from rbd_mirror_exporter.exporter_common import make_app, parse_config, run_exporter

from conftest import POOL, FakeRbd

ENV_VARS = ("POOL", "IP_ADDRESS", "PORT", "DEBUG", "TIMEOUT", "METRIC_PREFIX",
            "CLUSTER", "CLUSTER_LABEL", "STATUS_SHAPE", "RBD_BINARY")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def _get(app, path, query=""):
    environ = {"PATH_INFO": path, "QUERY_STRING": query}
    setup_testing_defaults(environ)
    captured = {}

    def start_response(status, headers, exc_info=None):
        captured["status"] = status
        captured["headers"] = dict(headers)

    body = b"".join(app(environ, start_response))
    return captured["status"], body.decode("utf-8")


def test_defaults():
    config = parse_config([])
    assert config == ExporterConfig(pool="ceph-pool1", ip_address="", port=9125, timeout=15.0)


def test_flags():
    config = parse_config([
        "--pool", "vms", "--ipaddress", "10.0.0.5", "--port", "9200", "--debug",
        "--timeout", "8", "--metric-prefix", "dr_", "--cluster", "site-a",
        "--cluster-label", "--status-shape", "mode-list", "--rbd-binary", "/usr/local/bin/rbd",
    ])
    assert config == ExporterConfig(
        pool="vms", ip_address="10.0.0.5", port=9200, debug=True, timeout=8.0,
        metric_prefix="dr_", cluster="site-a", cluster_label=True,
        status_shape="mode-list", rbd_binary="/usr/local/bin/rbd",
    )


def test_env_defaults(monkeypatch):
    monkeypatch.setenv("POOL", "from-env")
    monkeypatch.setenv("PORT", "9300")
    monkeypatch.setenv("DEBUG", "true")
    config = parse_config([])
    assert (config.pool, config.port, config.debug) == ("from-env", 9300, True)


def test_version(capsys):
    with pytest.raises(SystemExit) as exc:
        parse_config(["--version"])
    assert exc.value.code == 0
    assert capsys.readouterr().out.strip() == __version__


@pytest.mark.parametrize("argv", [
    ["--port", "70000"],
    ["--port", "http"],
    ["--timeout", "0"],
    ["--status-shape", "xml"],
])
def test_invalid_flags(argv):
    with pytest.raises(SystemExit) as exc:
        parse_config(argv)
    assert exc.value.code == 2


def _fake_factory(seen):
    def factory(cluster):
        seen.append(cluster)
        fake = FakeRbd()
        fake.set_pool([{"name": "vm1", "mode": "journal"}])
        fake.set_image("vm1", {"mode": "journal", "replaying_status": {"bytes_per_second": 1048576}})
        return fake
    return factory


def test_metrics_endpoint():
    seen = []
    app = make_app(ExporterConfig(pool=POOL), fetcher_factory=_fake_factory(seen))

    status, body = _get(app, "/metrics")

    assert status.startswith("200")
    assert "# TYPE ceph_vm_journal_speed_mib_per_sec gauge" in body
    lines = [l for l in body.splitlines() if l.startswith("ceph_vm_journal_speed_mib_per_sec{")]
    assert len(lines) == 1
    assert 'pool="rbd-vms"' in lines[0] and 'image="vm1"' in lines[0]
    assert lines[0].endswith(" 1.0")
    assert seen == [None]


def test_cluster_query_is_per_request():
    seen = []
    config = ExporterConfig(pool=POOL, cluster="primary", cluster_label=True)
    app = make_app(config, fetcher_factory=_fake_factory(seen))

    _, body = _get(app, "/metrics", "cluster=backup")
    assert 'cluster="backup"' in body
    _, body = _get(app, "/metrics")
    assert 'cluster="primary"' in body
    assert seen == ["backup", "primary"]


def test_pool_failure_is_still_200():
    def factory(cluster):
        fake = FakeRbd()
        fake.set_pool(b"rbd: mirroring not enabled")
        return fake

    status, body = _get(make_app(ExporterConfig(pool=POOL), fetcher_factory=factory), "/metrics")

    assert status.startswith("200")
    assert "ceph_vm_" not in body


def test_landing_page_and_404():
    app = make_app(ExporterConfig(pool=POOL), fetcher_factory=_fake_factory([]))

    status, body = _get(app, "/")
    assert status.startswith("200")
    assert 'href="/metrics"' in body

    status, _ = _get(app, "/debug")
    assert status.startswith("404")


def test_bind_failure_exits(caplog):
    with patch("rbd_mirror_exporter.exporter_common.make_http_server",
               side_effect=OSError(98, "Address already in use")):
        with pytest.raises(SystemExit) as exc:
            run_exporter(["--port", "9125"])
    assert exc.value.code == 1
    assert "Address already in use" in caplog.text


def test_debug_flag_lowers_log_level():
    root = logging.getLogger()
    level = root.level
    try:
        with patch("rbd_mirror_exporter.exporter_common.make_http_server",
                   side_effect=OSError("bind")):
            with pytest.raises(SystemExit):
                run_exporter(["--debug"])
        assert root.level == logging.DEBUG
    finally:
        root.setLevel(level)


def test_invalid_shape_from_env(monkeypatch):
    monkeypatch.setenv("STATUS_SHAPE", "bogus")
    with pytest.raises(SystemExit) as exc:
        parse_config([])
    assert exc.value.code == 2
