from dataclasses import dataclass

from .metrics import DEFAULT_PREFIX
from .mirror_status import SHAPE_AUTO

DEFAULT_POOL = "ceph-pool1"
DEFAULT_PORT = 9125
DEFAULT_TIMEOUT = 15.0
# cluster label value when no --cluster is given; rbd falls back to "ceph" too
DEFAULT_CLUSTER_NAME = "ceph"


@dataclass(frozen=True)
class ExporterConfig:
    pool: str = DEFAULT_POOL
    ip_address: str = ""
    port: int = DEFAULT_PORT
    debug: bool = False
    timeout: float = DEFAULT_TIMEOUT
    metric_prefix: str = DEFAULT_PREFIX
    cluster: str | None = None
    cluster_label: bool = False
    status_shape: str = SHAPE_AUTO
    rbd_binary: str = "rbd"
