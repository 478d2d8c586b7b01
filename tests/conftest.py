import json

import pytest

from rbd_mirror_exporter.config import ExporterConfig
from rbd_mirror_exporter.rbd import image_status_args, pool_status_args

POOL = "rbd-vms"


class FakeRbd:
    """Stands in for RbdClient; answers keyed by the joined argument list."""

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.calls = []
        self.deadlines = []

    def set_pool(self, payload, pool=POOL):
        self.responses[" ".join(pool_status_args(pool))] = _raw(payload)

    def set_image(self, image, payload, pool=POOL):
        self.responses[" ".join(image_status_args(pool, image))] = _raw(payload)

    def run(self, args, deadline=None):
        self.calls.append(list(args))
        self.deadlines.append(deadline)
        resp = self.responses[" ".join(args)]
        if isinstance(resp, Exception):
            raise resp
        return resp


def _raw(payload):
    if isinstance(payload, (bytes, Exception)):
        return payload
    return json.dumps(payload).encode("utf-8")


@pytest.fixture
def fake_rbd():
    return FakeRbd()


@pytest.fixture
def config():
    return ExporterConfig(pool=POOL)
