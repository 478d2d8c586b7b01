import argparse
import logging
import os
import sys
from socketserver import ThreadingMixIn
from urllib.parse import parse_qs
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

from prometheus_client import CollectorRegistry, make_wsgi_app

from . import __version__
from .collector import MirrorCollector
from .config import DEFAULT_POOL, DEFAULT_PORT, DEFAULT_TIMEOUT, ExporterConfig
from .metrics import DEFAULT_PREFIX, MetricSchema
from .mirror_status import SHAPE_AUTO, SHAPES

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(message)s",
)

LANDING_PAGE = b"""<html>
<head><title>RBD Mirror Exporter</title></head>
<body>
<h1>RBD Mirror Exporter</h1>
<p><a href="/metrics">Metrics</a></p>
</body>
</html>
"""


def _env_flag(name: str) -> bool:
    return os.getenv(name, "false").lower() == "true"


def _port(value: str) -> int:
    port = int(value)
    if not 0 < port < 65536:
        raise argparse.ArgumentTypeError(f"port out of range: {value}")
    return port


def _positive_float(value: str) -> float:
    f = float(value)
    if f <= 0:
        raise argparse.ArgumentTypeError(f"must be positive: {value}")
    return f


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Expose Ceph RBD mirroring status as Prometheus metrics.")
    ap.add_argument("--pool", default=os.getenv("POOL", DEFAULT_POOL),
                    help="Ceph pool to scan for VM images (ENV POOL).")
    ap.add_argument("--ipaddress", default=os.getenv("IP_ADDRESS", ""),
                    help="IP address to listen on, empty for all interfaces (ENV IP_ADDRESS).")
    ap.add_argument("--port", type=_port, default=os.getenv("PORT", str(DEFAULT_PORT)),
                    help="TCP port to listen on (ENV PORT).")
    ap.add_argument("--version", action="version", version=__version__,
                    help="Print version and exit.")
    ap.add_argument("--debug", action="store_true", default=_env_flag("DEBUG"),
                    help="Log every rbd invocation and its errors (ENV DEBUG=true).")
    ap.add_argument("--timeout", type=_positive_float, default=os.getenv("TIMEOUT", str(DEFAULT_TIMEOUT)),
                    help="Seconds allowed for all rbd calls of one scrape (ENV TIMEOUT).")
    ap.add_argument("--metric-prefix", default=os.getenv("METRIC_PREFIX", DEFAULT_PREFIX),
                    help="Prefix for every metric name (ENV METRIC_PREFIX).")
    ap.add_argument("--cluster", default=os.getenv("CLUSTER") or None,
                    help="Ceph cluster name passed to rbd --cluster; "
                         "overridden per scrape by ?cluster= (ENV CLUSTER).")
    ap.add_argument("--cluster-label", action="store_true", default=_env_flag("CLUSTER_LABEL"),
                    help="Add a cluster label to every metric (ENV CLUSTER_LABEL=true).")
    ap.add_argument("--status-shape", choices=SHAPES, default=os.getenv("STATUS_SHAPE", SHAPE_AUTO),
                    help="Layout of rbd pool status output (ENV STATUS_SHAPE).")
    ap.add_argument("--rbd-binary", default=os.getenv("RBD_BINARY", "rbd"),
                    help="rbd executable (ENV RBD_BINARY).")
    return ap


def parse_config(argv=None) -> ExporterConfig:
    ap = build_parser()
    args = ap.parse_args(argv)
    # argparse skips choices for string defaults, i.e. values from STATUS_SHAPE
    if args.status_shape not in SHAPES:
        ap.error(f"argument --status-shape: invalid choice: {args.status_shape!r} "
                 f"(choose from {', '.join(SHAPES)})")
    return ExporterConfig(
        pool=args.pool,
        ip_address=args.ipaddress,
        port=args.port,
        debug=args.debug,
        timeout=args.timeout,
        metric_prefix=args.metric_prefix,
        cluster=args.cluster,
        cluster_label=args.cluster_label,
        status_shape=args.status_shape,
        rbd_binary=args.rbd_binary,
    )


def make_app(config: ExporterConfig, schema: MetricSchema | None = None, fetcher_factory=None):
    """WSGI app serving ``/metrics``; each request gets its own registry.

    ``fetcher_factory(cluster)`` replaces the default rbd client, for tests.
    """
    schema = schema or MetricSchema(config.metric_prefix, config.cluster_label)

    def app(environ, start_response):
        path = environ.get("PATH_INFO", "/")
        if path in ("/metrics", "/metrics/"):
            params = parse_qs(environ.get("QUERY_STRING", ""))
            cluster = (params.get("cluster") or [""])[0] or config.cluster
            fetcher = fetcher_factory(cluster) if fetcher_factory else None
            registry = CollectorRegistry(auto_describe=False)
            registry.register(MirrorCollector(config, fetcher=fetcher, schema=schema, cluster=cluster))
            return make_wsgi_app(registry)(environ, start_response)
        if path == "/":
            start_response("200 OK", [("Content-Type", "text/html; charset=utf-8")])
            return [LANDING_PAGE]
        start_response("404 Not Found", [("Content-Type", "text/plain; charset=utf-8")])
        return [b"Not Found\n"]

    return app


class _ThreadingWSGIServer(ThreadingMixIn, WSGIServer):
    daemon_threads = True


class _QuietHandler(WSGIRequestHandler):
    def log_message(self, format, *args):
        logging.debug("%s %s", self.address_string(), format % args)


def make_http_server(config: ExporterConfig, app):
    return make_server(config.ip_address, config.port, app,
                       server_class=_ThreadingWSGIServer, handler_class=_QuietHandler)


def run_exporter(argv=None):
    config = parse_config(argv)
    if config.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    logging.info(
        "Starting exporter: listen=%s:%d pool=%s timeout=%ss cluster=%s shape=%s prefix=%s",
        config.ip_address or "0.0.0.0",
        config.port,
        config.pool,
        config.timeout,
        config.cluster,
        config.status_shape,
        config.metric_prefix,
    )

    try:
        httpd = make_http_server(config, make_app(config))
    except OSError as e:
        logging.critical("HTTP server failed: %s", e)
        sys.exit(1)
    print(f"Serving on http://{config.ip_address or '0.0.0.0'}:{config.port}/metrics; "
          f"pool {config.pool}", flush=True)

    try:
        httpd.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        httpd.server_close()
