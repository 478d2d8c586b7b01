from dataclasses import dataclass

from prometheus_client.core import GaugeMetricFamily

DEFAULT_PREFIX = "ceph_vm_"


@dataclass(frozen=True)
class MetricDesc:
    name: str
    documentation: str
    labels: tuple[str, ...]


# key, suffix, help text, extra label names
_METRICS = (
    ("journal_speed", "journal_speed_mib_per_sec", "Journal replay speed (MiB/s)", ()),
    ("journal_entries_behind", "journal_entries_behind_primary", "Journal entries behind primary", ()),
    ("journal_entries_per_sec", "journal_entries_per_sec", "Journal entries replayed per second", ()),
    ("journal_seconds_until_synced", "journal_seconds_until_synced",
     "Estimated seconds until journal is synced", ()),
    ("snapshot_sync_percent", "snapshot_sync_percent", "Snapshot sync progress (percent)", ()),
    ("snapshot_speed", "snapshot_speed_mib_per_sec", "Snapshot sync speed (MiB/s)", ()),
    ("snapshot_seconds_until_synced", "snapshot_seconds_until_synced",
     "Estimated seconds until snapshot is synced", ()),
    ("snapshot_bytes_per_snapshot", "snapshot_bytes_per_snapshot_mib", "Bytes per snapshot (MiB)", ()),
    ("snapshot_last_bytes", "snapshot_last_snapshot_bytes_mib", "Last snapshot size transferred (MiB)", ()),
    ("snapshot_last_sync_seconds", "snapshot_last_snapshot_sync_seconds", "Duration of last snapshot sync (s)", ()),
    ("snapshot_replication_state", "snapshot_replication_state",
     "1 if the peer site reports the image as replaying, otherwise 0", ("state",)),
    ("snapshot_last_update", "snapshot_last_update_timestamp",
     "Unix timestamp of the last peer site status update", ()),
)


class MetricSchema:
    """Descriptor table shared read-only by every scrape.

    Built once at startup; ``families()`` hands out fresh, empty gauge
    families so concurrent scrapes never touch each other's samples.
    """

    def __init__(self, prefix: str = DEFAULT_PREFIX, cluster_label: bool = False):
        self.prefix = prefix
        self.cluster_label = cluster_label
        base = ("cluster", "pool", "image") if cluster_label else ("pool", "image")
        self._descs = {
            key: MetricDesc(prefix + suffix, doc, base + extra)
            for key, suffix, doc, extra in _METRICS
        }

    def __getitem__(self, key: str) -> MetricDesc:
        return self._descs[key]

    def __iter__(self):
        return iter(self._descs.values())

    def keys(self):
        return self._descs.keys()

    def names(self) -> list[str]:
        return [d.name for d in self._descs.values()]

    def families(self) -> dict[str, GaugeMetricFamily]:
        return {
            key: GaugeMetricFamily(d.name, d.documentation, labels=list(d.labels))
            for key, d in self._descs.items()
        }
