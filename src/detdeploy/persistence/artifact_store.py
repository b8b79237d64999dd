"""File-backed artifact store — durable record of what was deployed where.

Layout, one directory per (category, chain_id, contract_name) key:

    <root>/<category>/<chain_id>/<contract_name>/deployments.json
    <root>/<category>/<chain_id>/<contract_name>/verification.json

deployments.json maps version -> DeployedRecord. verification.json maps
version -> the ABI-encoded initializer arguments and creation code hash
needed to verify the contract on a block explorer later.

Runs against different chains may execute in parallel processes. Writes
are serialised per key with an exclusive fcntl lock on a sidecar .lock
file and performed as read-merge-write through a temp file and
os.replace, so readers never observe a partial file. Different keys
never contend.
"""

from __future__ import annotations

import fcntl
import json
import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

from detdeploy.errors import ArtifactStoreUnavailable
from detdeploy.models.deployment import DeployedRecord

logger = logging.getLogger(__name__)

DEPLOYMENTS_FILE = "deployments.json"
VERIFICATION_FILE = "verification.json"
_LOCK_SUFFIX = ".lock"


@contextmanager
def _locked(path: Path) -> Iterator[None]:
    """Hold an exclusive lock on ``path``'s sidecar lock file."""
    lock_path = path.with_suffix(path.suffix + _LOCK_SUFFIX)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with lock_path.open("a+", encoding="utf-8") as handle:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


def _atomic_write_json(path: Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2, sort_keys=True)
            handle.write("\n")
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, str(path))
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def _read_json(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as handle:
        data = json.load(handle)
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a JSON object")
    return data


class ArtifactStore:
    """Per-key JSON artifact records under a root directory.

    Every failure to read or write surfaces as ArtifactStoreUnavailable.
    """

    def __init__(self, root: Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def key_dir(self, category: str, chain_id: int, contract_name: str) -> Path:
        return self._root / category / str(chain_id) / contract_name

    def read(
        self,
        category: str,
        chain_id: int,
        contract_name: str,
        version: str,
    ) -> Optional[str]:
        """Return the recorded address for a version, or None."""
        record = self.read_record(category, chain_id, contract_name, version)
        return record.address if record else None

    def read_record(
        self,
        category: str,
        chain_id: int,
        contract_name: str,
        version: str,
    ) -> Optional[DeployedRecord]:
        path = self.key_dir(category, chain_id, contract_name) / DEPLOYMENTS_FILE
        try:
            entry = _read_json(path).get(version)
            return DeployedRecord.from_dict(entry) if entry else None
        except (OSError, ValueError, KeyError, TypeError) as exc:
            raise ArtifactStoreUnavailable(f"Cannot read {path}: {exc}") from exc

    def records(self, category: str, chain_id: int, contract_name: str) -> list[DeployedRecord]:
        """All records for a key, oldest first."""
        path = self.key_dir(category, chain_id, contract_name) / DEPLOYMENTS_FILE
        try:
            entries = _read_json(path)
            records = [DeployedRecord.from_dict(e) for e in entries.values()]
        except (OSError, ValueError, KeyError, TypeError) as exc:
            raise ArtifactStoreUnavailable(f"Cannot read {path}: {exc}") from exc
        return sorted(records, key=lambda r: (r.timestamp_utc, r.version))

    def verification(
        self,
        category: str,
        chain_id: int,
        contract_name: str,
        version: str,
    ) -> Optional[dict[str, Any]]:
        path = self.key_dir(category, chain_id, contract_name) / VERIFICATION_FILE
        try:
            return _read_json(path).get(version)
        except (OSError, ValueError) as exc:
            raise ArtifactStoreUnavailable(f"Cannot read {path}: {exc}") from exc

    def write(
        self,
        category: str,
        chain_id: int,
        contract_name: str,
        record: DeployedRecord,
        verification: Optional[dict[str, Any]] = None,
    ) -> None:
        """Merge one record (and its verification metadata) into the key.

        Records for other versions are preserved. Writing the same version
        again replaces its entry, which is how a forced run re-affirms an
        address.

        verification.json is written first; replacing deployments.json is
        the single commit point. If that replace fails the previous
        verification.json is restored, so a record never exists without
        its metadata.
        """
        key_dir = self.key_dir(category, chain_id, contract_name)
        deployments = key_dir / DEPLOYMENTS_FILE
        meta_path = key_dir / VERIFICATION_FILE
        try:
            with _locked(deployments):
                entries = _read_json(deployments)
                previous_meta: Optional[dict[str, Any]] = None
                if verification is not None:
                    previous_meta = _read_json(meta_path)
                    meta = dict(previous_meta)
                    meta[record.version] = verification
                    _atomic_write_json(meta_path, meta)

                entries[record.version] = record.to_dict()
                try:
                    _atomic_write_json(deployments, entries)
                except (OSError, ValueError):
                    if previous_meta is not None:
                        self._restore(meta_path, previous_meta)
                    raise
        except (OSError, ValueError) as exc:
            raise ArtifactStoreUnavailable(f"Cannot write {deployments}: {exc}") from exc

        logger.info(
            "Recorded %s %s on chain %d at %s",
            contract_name, record.version, chain_id, record.address,
        )

    @staticmethod
    def _restore(meta_path: Path, previous: dict[str, Any]) -> None:
        if previous:
            _atomic_write_json(meta_path, previous)
        else:
            meta_path.unlink(missing_ok=True)

    def categories(self) -> list[str]:
        if not self._root.exists():
            return []
        return sorted(p.name for p in self._root.iterdir() if p.is_dir())

    def chains(self, category: str) -> list[int]:
        base = self._root / category
        if not base.exists():
            return []
        return sorted(int(p.name) for p in base.iterdir() if p.is_dir() and p.name.isdigit())

    def contracts(self, category: str, chain_id: int) -> list[str]:
        base = self._root / category / str(chain_id)
        if not base.exists():
            return []
        return sorted(p.name for p in base.iterdir() if (p / DEPLOYMENTS_FILE).exists())

    def all_records(self) -> list[DeployedRecord]:
        """Every record in the store, grouped by category, chain and contract."""
        result: list[DeployedRecord] = []
        for category in self.categories():
            for chain_id in self.chains(category):
                for contract_name in self.contracts(category, chain_id):
                    result.extend(self.records(category, chain_id, contract_name))
        return result
