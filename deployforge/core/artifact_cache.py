"""Durable artifact cache — the idempotence boundary for deployments.

Storage layout, one directory per (network, deployment)::

    {base_path}/{network}/{deployment}/artifacts.json   name -> record (+ history)
    {base_path}/{network}/{deployment}/state.json       manifest, roots, vars, interfaces

Writes go to a temp file in the same directory, are fsynced, then atomically
renamed over the target. A crash mid-write leaves the previous file intact.
A file or record that fails to parse reads as absent: the caller redeploys
instead of aborting the whole run.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from deployforge.models.artifacts import ArtifactKey, ArtifactRecord
from deployforge.models.relations import RelationManifest

logger = logging.getLogger(__name__)

_ARTIFACTS_FILE = "artifacts.json"
_STATE_FILE = "state.json"


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name)
    return section if isinstance(section, dict) else {}


class ArtifactCache:
    """Keyed store of ``ArtifactRecord`` plus per-deployment crawl/migration state.

    Concurrent writers (two operators against the same deployment) resolve
    to last-writer-wins per key: every ``put`` re-reads the file, replaces
    exactly one key, and atomically swaps the file in.

    Parameters
    ----------
    base_path:
        Root directory, typically ``deployments/``.
    write_to_disk:
        When ``False`` (simulation), writes stay in memory and reads prefer
        the in-memory copy, falling back to disk.
    """

    def __init__(self, base_path: Path, *, write_to_disk: bool = True) -> None:
        self._base = Path(base_path)
        self._write_to_disk = write_to_disk
        self._lock = threading.Lock()
        self._memory: dict[Path, dict[str, Any]] = {}

    @property
    def write_to_disk(self) -> bool:
        return self._write_to_disk

    def scope_dir(self, network: str, deployment: str) -> Path:
        return self._base / network.lower() / deployment.lower()

    def _artifacts_path(self, network: str, deployment: str) -> Path:
        return self.scope_dir(network, deployment) / _ARTIFACTS_FILE

    def _state_path(self, network: str, deployment: str) -> Path:
        return self.scope_dir(network, deployment) / _STATE_FILE

    # ------------------------------------------------------------------
    # Artifacts
    # ------------------------------------------------------------------

    def get(self, key: ArtifactKey) -> ArtifactRecord | None:
        """Return the live record for *key*, or ``None`` if absent or corrupt."""
        data = self._read_json(self._artifacts_path(key.network, key.deployment))
        raw = _section(data, "artifacts").get(key.name)
        if raw is None:
            return None
        return self._parse_record(raw, str(key))

    def put(self, key: ArtifactKey, record: ArtifactRecord) -> None:
        """Durably store *record* under *key*, replacing any previous record.

        A replaced record with a different address is appended to the key's
        history so the replace stays auditable.
        """
        path = self._artifacts_path(key.network, key.deployment)
        name = key.name
        with self._lock:
            data = self._read_json(path)
            artifacts = data["artifacts"] = _section(data, "artifacts")
            previous = artifacts.get(name)
            if (
                isinstance(previous, dict)
                and str(previous.get("address", "")).lower() != record.address.lower()
            ):
                history = data["history"] = _section(data, "history")
                history.setdefault(name, []).append(previous)
                logger.warning(
                    "Replacing %s: %s -> %s", key, previous.get("address"), record.address
                )
            artifacts[name] = record.model_dump(mode="json")
            self._atomic_write(path, data)
        logger.debug("Cached %s at %s", key, record.address)

    def records(self, network: str, deployment: str) -> dict[str, ArtifactRecord]:
        """All readable live records for a (network, deployment), by name."""
        data = self._read_json(self._artifacts_path(network, deployment))
        result: dict[str, ArtifactRecord] = {}
        for name, raw in _section(data, "artifacts").items():
            record = self._parse_record(raw, f"{network}/{deployment}/{name}")
            if record is not None:
                result[name] = record
        return result

    def names(self, network: str, deployment: str) -> list[str]:
        return sorted(self.records(network, deployment))

    def history(self, key: ArtifactKey) -> list[ArtifactRecord]:
        """Records previously replaced under *key*, oldest first."""
        data = self._read_json(self._artifacts_path(key.network, key.deployment))
        raws = _section(data, "history").get(key.name) or []
        parsed = (self._parse_record(raw, str(key)) for raw in raws)
        return [r for r in parsed if r is not None]

    # ------------------------------------------------------------------
    # Crawl state
    # ------------------------------------------------------------------

    def read_manifest(self, network: str, deployment: str) -> RelationManifest | None:
        raw = self._read_state(network, deployment).get("manifest")
        if raw is None:
            return None
        try:
            return RelationManifest.model_validate(raw)
        except ValidationError:
            logger.warning(
                "Corrupt relation manifest for %s/%s — treating as missing.",
                network,
                deployment,
            )
            return None

    def store_manifest(
        self, network: str, deployment: str, manifest: RelationManifest
    ) -> None:
        self._update_state(network, deployment, "manifest", manifest.model_dump(mode="json"))

    def delete_manifest(self, network: str, deployment: str) -> None:
        """Invalidate the stored manifest so the next lookup re-crawls."""
        self._update_state(network, deployment, "manifest", None)

    def read_roots(self, network: str, deployment: str) -> dict[str, str]:
        roots = self._read_state(network, deployment).get("roots") or {}
        if not isinstance(roots, dict):
            logger.warning("Corrupt roots for %s/%s — ignoring.", network, deployment)
            return {}
        return {str(k): str(v) for k, v in roots.items()}

    def store_roots(self, network: str, deployment: str, roots: dict[str, str]) -> None:
        self._update_state(network, deployment, "roots", dict(roots))

    # ------------------------------------------------------------------
    # Migration vars checkpoints
    # ------------------------------------------------------------------

    def read_vars(self, network: str, deployment: str, migration: str) -> Any | None:
        """Return the checkpointed vars for *migration*, or ``None``."""
        all_vars = self._read_state(network, deployment).get("vars") or {}
        if not isinstance(all_vars, dict):
            return None
        return copy.deepcopy(all_vars.get(migration))

    def store_vars(
        self, network: str, deployment: str, migration: str, value: Any
    ) -> None:
        self._update_state_entry(network, deployment, "vars", migration, value)

    # ------------------------------------------------------------------
    # Imported interfaces
    # ------------------------------------------------------------------

    def read_interface(
        self, network: str, deployment: str, build_id: str
    ) -> list[dict[str, Any]] | None:
        """The ABI stored under *build_id*, or ``None``."""
        abi = _section(self._read_state(network, deployment), "interfaces").get(build_id)
        return copy.deepcopy(abi) if isinstance(abi, list) else None

    def store_interface(
        self, network: str, deployment: str, build_id: str, abi: list[dict[str, Any]]
    ) -> None:
        self._update_state_entry(network, deployment, "interfaces", build_id, list(abi))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _read_state(self, network: str, deployment: str) -> dict[str, Any]:
        return self._read_json(self._state_path(network, deployment))

    def _update_state(self, network: str, deployment: str, field: str, value: Any) -> None:
        path = self._state_path(network, deployment)
        with self._lock:
            data = self._read_json(path)
            if value is None:
                data.pop(field, None)
            else:
                data[field] = value
            self._atomic_write(path, data)

    def _update_state_entry(
        self, network: str, deployment: str, section: str, key: str, value: Any
    ) -> None:
        path = self._state_path(network, deployment)
        with self._lock:
            data = self._read_json(path)
            entries = data[section] = _section(data, section)
            entries[key] = value
            self._atomic_write(path, data)

    @staticmethod
    def _parse_record(raw: Any, label: str) -> ArtifactRecord | None:
        try:
            return ArtifactRecord.model_validate(raw)
        except ValidationError:
            logger.warning("Corrupt cache record for %s — treating as absent.", label)
            return None

    def _read_json(self, path: Path) -> dict[str, Any]:
        if path in self._memory:
            return copy.deepcopy(self._memory[path])
        if not path.exists():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError):
            logger.warning("Unreadable cache file %s — treating as empty.", path)
            return {}
        if not isinstance(data, dict):
            logger.warning("Unexpected cache layout in %s — treating as empty.", path)
            return {}
        return data

    def _atomic_write(self, path: Path, data: dict[str, Any]) -> None:
        if not self._write_to_disk:
            self._memory[path] = copy.deepcopy(data)
            return

        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2, sort_keys=True, default=str)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
