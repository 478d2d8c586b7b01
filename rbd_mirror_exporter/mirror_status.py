"""Parsing of ``rbd mirror ... --format json`` output.

Two pool-status shapes are understood:

* mode-list: every image object carries a ``mode`` (``journal``,
  ``snapshot``, ``disabled``...) and the per-image numbers come from a second
  ``rbd mirror image status`` call whose payload holds a
  ``replaying_status`` or ``snapshot_status`` object.
* peer-description: the verbose pool status embeds the numbers as a JSON
  fragment inside ``peer_sites[0].description``, e.g.
  ``"replaying, {\"bytes_per_second\":0.0,...}"``.

Per-image numbers resolve to exactly one of ``ReplayingStatus``,
``SnapshotStatus`` or ``None`` (nothing to report).
"""
import json
import math
from dataclasses import dataclass
from datetime import datetime, timezone

MIB = 1048576.0

MODE_JOURNAL = "journal"
MODE_SNAPSHOT = "snapshot"
MIRRORED_MODES = (MODE_JOURNAL, MODE_SNAPSHOT)

SHAPE_AUTO = "auto"
SHAPE_MODE_LIST = "mode-list"
SHAPE_PEER_DESCRIPTION = "peer-description"
SHAPES = (SHAPE_AUTO, SHAPE_MODE_LIST, SHAPE_PEER_DESCRIPTION)

LAST_UPDATE_FORMAT = "%Y-%m-%d %H:%M:%S"
HEALTHY_STATE_TOKEN = "replaying"


class StatusDecodeError(ValueError):
    pass


@dataclass(frozen=True)
class ImageEntry:
    name: str
    mode: str | None = None
    description: str | None = None
    state: str | None = None
    last_update: str | None = None


@dataclass(frozen=True)
class ReplayingStatus:
    bytes_per_second: float = 0.0
    entries_behind_primary: float = 0.0
    entries_per_second: float = 0.0
    seconds_until_synced: float = 0.0

    @property
    def speed_mib_per_sec(self) -> float:
        return self.bytes_per_second / MIB


@dataclass(frozen=True)
class SnapshotStatus:
    bytes_per_snapshot: float = 0.0
    last_snapshot_bytes: float = 0.0
    last_snapshot_sync_seconds: float = 0.0
    sync_percent: float | None = None
    seconds_until_synced: float | None = None
    # peer-description shape only
    state: str | None = None
    last_update: float | None = None

    @property
    def speed_mib_per_sec(self) -> float:
        if self.last_snapshot_sync_seconds <= 0:
            return 0.0
        speed = self.last_snapshot_bytes / self.last_snapshot_sync_seconds / MIB
        return speed if math.isfinite(speed) else 0.0

    @property
    def replicating(self) -> float | None:
        if self.state is None:
            return None
        return 1.0 if HEALTHY_STATE_TOKEN in self.state else 0.0


def decode_json(raw: bytes, what: str):
    try:
        return json.loads(raw.decode("utf-8"))
    # ValueError also covers int digit limits; RecursionError covers deep nesting
    except (ValueError, RecursionError) as e:
        raise StatusDecodeError(f"decode {what}: {e}") from e


def _number(obj: dict, key: str, ctx: str, default=0.0):
    val = obj.get(key)
    if val is None:
        return default
    if isinstance(val, bool) or not isinstance(val, (int, float)):
        raise StatusDecodeError(f"{ctx}.{key}: not a number: {val!r}")
    try:
        val = float(val)
    except OverflowError as e:
        raise StatusDecodeError(f"{ctx}.{key}: out of range") from e
    if not math.isfinite(val):
        raise StatusDecodeError(f"{ctx}.{key}: not finite: {val!r}")
    return val


def _first_number(obj: dict, keys, ctx: str):
    for key in keys:
        if obj.get(key) is not None:
            return _number(obj, key, ctx)
    return None


def replaying_status(obj: dict, ctx: str) -> ReplayingStatus:
    return ReplayingStatus(
        bytes_per_second=_number(obj, "bytes_per_second", ctx),
        entries_behind_primary=_number(obj, "entries_behind_primary", ctx),
        entries_per_second=_number(obj, "entries_per_second", ctx),
        seconds_until_synced=_number(obj, "seconds_until_synced", ctx),
    )


def snapshot_status(obj: dict, ctx: str, state: str | None = None,
                    last_update: float | None = None) -> SnapshotStatus:
    return SnapshotStatus(
        bytes_per_snapshot=_number(obj, "bytes_per_snapshot", ctx),
        last_snapshot_bytes=_number(obj, "last_snapshot_bytes", ctx),
        last_snapshot_sync_seconds=_number(obj, "last_snapshot_sync_seconds", ctx),
        # rbd reports "syncing_percent" while a snapshot is in flight
        sync_percent=_first_number(obj, ("sync_percent", "syncing_percent"), ctx),
        seconds_until_synced=_first_number(obj, ("seconds_until_synced",), ctx),
        state=state,
        last_update=last_update,
    )


def _pool_images(payload) -> list:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        images = payload.get("images", [])
        if isinstance(images, list):
            return images
    raise StatusDecodeError(f"pool status: expected a list of images, got {type(payload).__name__}")


def detect_shape(payload) -> str:
    for img in _pool_images(payload):
        if isinstance(img, dict) and "mode" in img:
            return SHAPE_MODE_LIST
    return SHAPE_PEER_DESCRIPTION


def parse_mode_list(payload) -> list[ImageEntry]:
    entries = []
    for img in _pool_images(payload):
        if not isinstance(img, dict) or not isinstance(img.get("name"), str):
            continue
        mode = img.get("mode")
        entries.append(ImageEntry(name=img["name"], mode=mode if isinstance(mode, str) else None))
    return entries


def parse_peer_description(payload) -> list[ImageEntry]:
    entries = []
    for img in _pool_images(payload):
        if not isinstance(img, dict) or not isinstance(img.get("name"), str):
            continue
        peers = img.get("peer_sites") or []
        peer = peers[0] if isinstance(peers, list) and peers and isinstance(peers[0], dict) else {}
        entries.append(ImageEntry(
            name=img["name"],
            description=_str_or_none(peer.get("description")),
            state=_str_or_none(peer.get("state")),
            last_update=_str_or_none(peer.get("last_update")),
        ))
    return entries


def _str_or_none(val):
    return val if isinstance(val, str) else None


def parse_pool_status(payload, shape: str = SHAPE_AUTO) -> tuple[str, list[ImageEntry]]:
    """Returns the shape actually used and the images in enumeration order."""
    if shape == SHAPE_AUTO:
        shape = detect_shape(payload)
    if shape == SHAPE_MODE_LIST:
        return shape, parse_mode_list(payload)
    if shape == SHAPE_PEER_DESCRIPTION:
        return shape, parse_peer_description(payload)
    raise ValueError(f"unknown status shape: {shape!r}")


def parse_image_status(payload, default_mode: str | None = None):
    """Resolve an ``rbd mirror image status`` payload by its own mode field.

    Returns None for modes that carry no mirroring numbers and for a declared
    mode whose status object is absent.
    """
    if not isinstance(payload, dict):
        raise StatusDecodeError(f"image status: expected an object, got {type(payload).__name__}")
    mode = payload.get("mode") or default_mode
    if mode == MODE_JOURNAL:
        sub = payload.get("replaying_status")
        if not isinstance(sub, dict):
            return None
        return replaying_status(sub, "replaying_status")
    if mode == MODE_SNAPSHOT:
        sub = payload.get("snapshot_status")
        if not isinstance(sub, dict):
            return None
        return snapshot_status(sub, "snapshot_status")
    return None


def description_fragment(description: str | None):
    """Decode the JSON object starting at the first '{' of a peer description."""
    if not description:
        return None
    idx = description.find("{")
    if idx == -1:
        return None
    try:
        obj, _ = json.JSONDecoder().raw_decode(description, idx)
    except (ValueError, RecursionError) as e:
        raise StatusDecodeError(f"decode description stats: {e}") from e
    if not isinstance(obj, dict):
        raise StatusDecodeError("description stats: not an object")
    return obj


def parse_last_update(value: str | None) -> float | None:
    if not value:
        return None
    try:
        dt = datetime.strptime(value.strip(), LAST_UPDATE_FORMAT)
    except ValueError:
        return None
    return dt.replace(tzinfo=timezone.utc).timestamp()


def parse_description_status(entry: ImageEntry):
    """Numbers embedded in a peer-site description, or None when there are none."""
    stats = description_fragment(entry.description)
    if stats is None:
        return None
    if "entries_behind_primary" in stats:
        return replaying_status(stats, "description")
    state = entry.state
    if not state:
        state = entry.description[:entry.description.find("{")].strip(" ,") or None
    return snapshot_status(stats, "description", state=state,
                           last_update=parse_last_update(entry.last_update))
