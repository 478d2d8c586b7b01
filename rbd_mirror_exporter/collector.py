import logging
import time

from .config import DEFAULT_CLUSTER_NAME, ExporterConfig
from .metrics import MetricSchema
from .mirror_status import (
    MIB,
    MIRRORED_MODES,
    SHAPE_MODE_LIST,
    ImageEntry,
    ReplayingStatus,
    SnapshotStatus,
    StatusDecodeError,
    decode_json,
    parse_description_status,
    parse_image_status,
    parse_pool_status,
)
from .rbd import RbdClient, RbdError, RbdTimeoutError, image_status_args, pool_status_args


class MirrorCollector:
    """prometheus_client collector for the mirroring state of one pool.

    Every ``collect()`` runs rbd again; nothing is cached between scrapes and
    the only state kept on the instance is configuration.
    """

    def __init__(self, config: ExporterConfig, fetcher=None, schema: MetricSchema | None = None,
                 cluster: str | None = None):
        self.config = config
        self.pool = config.pool
        self.cluster = cluster or config.cluster
        self.schema = schema or MetricSchema(config.metric_prefix, config.cluster_label)
        self.fetcher = fetcher or RbdClient(config.rbd_binary, cluster=self.cluster, debug=config.debug)

    def describe(self):
        # keeps registration from running rbd
        return []

    def _labels(self, image: str) -> list[str]:
        if self.schema.cluster_label:
            return [self.cluster or DEFAULT_CLUSTER_NAME, self.pool, image]
        return [self.pool, image]

    def _image_status(self, shape: str, entry: ImageEntry, deadline: float):
        if shape != SHAPE_MODE_LIST:
            status = parse_description_status(entry)
            if status is None:
                logging.debug("image %s/%s: no stats in peer description %r",
                              self.pool, entry.name, entry.description)
            return status

        if entry.mode not in MIRRORED_MODES:
            logging.debug("image %s/%s: mode %r not mirrored, skipping", self.pool, entry.name, entry.mode)
            return None
        raw = self.fetcher.run(image_status_args(self.pool, entry.name), deadline=deadline)
        payload = decode_json(raw, f"image status {entry.name}")
        status = parse_image_status(payload, default_mode=entry.mode)
        if status is None:
            mode = payload.get("mode") or entry.mode
            if mode in MIRRORED_MODES:
                logging.warning("image %s/%s: %s status missing from image status",
                                self.pool, entry.name, mode)
            else:
                logging.debug("image %s/%s: image status mode %r not mirrored, skipping",
                              self.pool, entry.name, mode)
        return status

    def _add_samples(self, families, entry: ImageEntry, status):
        labels = self._labels(entry.name)
        if isinstance(status, ReplayingStatus):
            families["journal_speed"].add_metric(labels, status.speed_mib_per_sec)
            families["journal_entries_behind"].add_metric(labels, status.entries_behind_primary)
            families["journal_entries_per_sec"].add_metric(labels, status.entries_per_second)
            families["journal_seconds_until_synced"].add_metric(labels, status.seconds_until_synced)
            return

        if status.sync_percent is not None:
            families["snapshot_sync_percent"].add_metric(labels, status.sync_percent)
        families["snapshot_speed"].add_metric(labels, status.speed_mib_per_sec)
        if status.seconds_until_synced is not None:
            families["snapshot_seconds_until_synced"].add_metric(labels, status.seconds_until_synced)
        families["snapshot_bytes_per_snapshot"].add_metric(labels, status.bytes_per_snapshot / MIB)
        families["snapshot_last_bytes"].add_metric(labels, status.last_snapshot_bytes / MIB)
        families["snapshot_last_sync_seconds"].add_metric(labels, status.last_snapshot_sync_seconds)

        if status.replicating is not None:
            families["snapshot_replication_state"].add_metric(labels + [status.state], status.replicating)
        if status.last_update is not None:
            families["snapshot_last_update"].add_metric(labels, status.last_update)
        elif entry.last_update:
            logging.debug("image %s/%s: unparsable last_update %r", self.pool, entry.name, entry.last_update)

    def collect(self):
        start = time.perf_counter()
        deadline = time.monotonic() + self.config.timeout
        try:
            raw = self.fetcher.run(pool_status_args(self.pool), deadline=deadline)
            shape, images = parse_pool_status(decode_json(raw, "pool status"), self.config.status_shape)
        except (RbdError, StatusDecodeError) as e:
            logging.error("mirror pool status error for pool %s: %s", self.pool, e)
            return

        families = self.schema.families()
        skipped = 0
        for entry in images:
            try:
                status = self._image_status(shape, entry, deadline)
            except RbdTimeoutError as e:
                logging.error("scrape of pool %s aborted: %s", self.pool, e)
                break
            except (RbdError, StatusDecodeError) as e:
                logging.warning("image %s/%s skipped: %s", self.pool, entry.name, e)
                skipped += 1
                continue
            if isinstance(status, (ReplayingStatus, SnapshotStatus)):
                self._add_samples(families, entry, status)

        logging.debug("scraped pool %s (%s): %d images, %d failed in %.3fs",
                      self.pool, shape, len(images), skipped, time.perf_counter() - start)
        for family in families.values():
            if family.samples:
                yield family
