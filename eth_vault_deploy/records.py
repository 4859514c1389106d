"""Deployment records.

Remember what was deployed under which logical name, per network.
The reconciler reads the records to decide if an existing deployment can be reused
and writes new records after a successful deployment. Records are never deleted.

Available backends

- :py:class:`InMemoryDeploymentRecordStore` for tests and simulations

- :py:class:`JSONDeploymentRecordStore` writes ``<root>/<network>/<logical name>.json`` files
  that can be committed to a git repository

- :py:class:`SQLiteDeploymentRecordStore` keeps all networks in a single SQLite file
"""

import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from pathlib import Path
from threading import get_ident
from typing import Iterable, Optional

from eth_typing import HexAddress

from eth_vault_deploy.artifact import ResolvedArtifact
from eth_vault_deploy.utils import wait_other_writers


logger = logging.getLogger(__name__)


#: Ints larger than this are stored as strings in JSON
#:
#: JavaScript readers lose precision above 2**53
#:
#: Encoded values are wrapped in single key dicts: ``{"int": "..."}``, ``{"bytes": "0x..."}``
#: and ``{"dict": {...}}`` for struct arguments
_MAX_SAFE_INT = 2**53


def _encode_value(value):
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and abs(value) >= _MAX_SAFE_INT:
        return {"int": str(value)}
    if isinstance(value, bytes):
        return {"bytes": "0x" + value.hex()}
    if isinstance(value, (list, tuple)):
        return [_encode_value(v) for v in value]
    if isinstance(value, dict):
        # Struct arguments, tagged so they cannot be confused with the int and bytes wrappers
        return {"dict": {k: _encode_value(v) for k, v in value.items()}}
    return value


def _decode_value(value):
    if isinstance(value, dict):
        if "int" in value:
            return int(value["int"])
        if "bytes" in value:
            return bytes.fromhex(value["bytes"][2:])
        if "dict" in value:
            return {k: _decode_value(v) for k, v in value["dict"].items()}
        raise ValueError(f"Unknown encoded value: {value}")
    if isinstance(value, list):
        return [_decode_value(v) for v in value]
    return value


def normalise_bytecode(bytecode: str | bytes | None) -> str | None:
    """Lower case hex without 0x prefix, for comparison."""
    if bytecode is None:
        return None
    if isinstance(bytecode, bytes):
        return bytecode.hex()
    bytecode = bytecode.lower()
    if bytecode.startswith("0x"):
        bytecode = bytecode[2:]
    return bytecode


@dataclass(slots=True, frozen=True)
class DeploymentRecord:
    """A contract deployed under a logical name."""

    #: Name used as the idempotency key
    logical_name: str

    #: Where the contract lives
    address: HexAddress

    #: Contract name it was deployed from
    contract_kind: str

    #: Fully resolved constructor arguments
    constructor_args: list

    #: Creation bytecode used, if known
    bytecode: str | None = None

    #: Deployment transaction hash as hex
    tx_hash: str | None = None

    #: UNIX timestamp of the deployment
    deployed_at: int | None = None

    def as_json_friendly_dict(self) -> dict:
        """Convert to a dict that can be written with :py:func:`json.dumps`.

        Large ints are converted to strings.
        """
        data = asdict(self)
        data["constructor_args"] = _encode_value(self.constructor_args)
        return data

    @staticmethod
    def from_json_friendly_dict(data: dict) -> "DeploymentRecord":
        """Reverse of :py:meth:`as_json_friendly_dict`."""
        data = dict(data)
        data["constructor_args"] = _decode_value(data["constructor_args"])
        return DeploymentRecord(**data)


def find_differences(record: DeploymentRecord, resolved: ResolvedArtifact) -> list[str]:
    """Compare what was deployed against what we want.

    - Constructor arguments are compared position by position, ordering matters

    - Bytecode is compared only if both sides know it

    :return:
        Human readable differences. Empty list if the record satisfies the desired artifact.
    """
    differences = []

    if record.contract_kind != resolved.contract_kind:
        differences.append(f"contract kind {record.contract_kind} != {resolved.contract_kind}")

    old_args = list(record.constructor_args)
    new_args = list(resolved.constructor_args)
    if len(old_args) != len(new_args):
        differences.append(f"constructor argument count {len(old_args)} != {len(new_args)}")
    else:
        for idx, (old, new) in enumerate(zip(old_args, new_args)):
            if old != new:
                differences.append(f"constructor argument #{idx} {old!r} != {new!r}")

    old_bytecode = normalise_bytecode(record.bytecode)
    new_bytecode = normalise_bytecode(resolved.bytecode)
    if old_bytecode is not None and new_bytecode is not None and old_bytecode != new_bytecode:
        differences.append("bytecode changed")

    return differences


class DeploymentRecordStore(ABC):
    """Key-value storage of deployment records for a single network."""

    @abstractmethod
    def get(self, logical_name: str) -> Optional[DeploymentRecord]:
        """Get the last deployment under a name, or ``None``."""

    @abstractmethod
    def put(self, record: DeploymentRecord):
        """Create or update the record under its logical name."""

    @abstractmethod
    def names(self) -> Iterable[str]:
        """All logical names with a record."""


class InMemoryDeploymentRecordStore(DeploymentRecordStore):
    """Records in a Python dict.

    Used in tests and in simulated deployments.
    """

    def __init__(self):
        self.records: dict[str, DeploymentRecord] = {}

    def __repr__(self):
        return f"<InMemoryDeploymentRecordStore {len(self.records)} records>"

    def get(self, logical_name: str) -> Optional[DeploymentRecord]:
        return self.records.get(logical_name)

    def put(self, record: DeploymentRecord):
        assert isinstance(record, DeploymentRecord)
        self.records[record.logical_name] = record

    def names(self) -> list[str]:
        return list(self.records.keys())


class JSONDeploymentRecordStore(DeploymentRecordStore):
    """One JSON file per logical name.

    Layout is ``<root>/<network>/<logical name>.json``, similar to ``hardhat-deploy``
    ``deployments`` folder.
    """

    def __init__(self, root: Path, network: str):
        """
        :param root:
            Absolute path to the deployments folder

        :param network:
            Network name or chain id, partitions the records
        """
        assert isinstance(root, Path), f"Expected Path, got {type(root)}"
        assert network, "Network name missing"
        self.root = root.resolve()
        self.network = str(network)
        self.path = self.root / self.network

    def __repr__(self):
        return f"<JSONDeploymentRecordStore {self.path}>"

    def get_record_path(self, logical_name: str) -> Path:
        assert "/" not in logical_name and "\\" not in logical_name, f"Bad logical name: {logical_name}"
        return self.path / f"{logical_name}.json"

    def get(self, logical_name: str) -> Optional[DeploymentRecord]:
        path = self.get_record_path(logical_name)
        if not path.exists():
            return None
        with open(path, "rt", encoding="utf-8") as f:
            return DeploymentRecord.from_json_friendly_dict(json.load(f))

    def put(self, record: DeploymentRecord):
        path = self.get_record_path(record.logical_name)
        with wait_other_writers(path):
            temp_path = path.with_suffix(".json.tmp")
            with open(temp_path, "wt", encoding="utf-8") as f:
                json.dump(record.as_json_friendly_dict(), f, indent=2)
            temp_path.replace(path)
        logger.info("Wrote deployment record %s", path)

    def names(self) -> list[str]:
        if not self.path.exists():
            return []
        return sorted(p.stem for p in self.path.glob("*.json"))


class SQLiteDeploymentRecordStore(DeploymentRecordStore):
    """Deployment records in a SQLite key-value table.

    - Keys are ``<network>/<logical name>``, so one file can serve several networks
    - Values are JSON
    - One connection per thread
    """

    def __init__(self, filename: Path, network: str):
        """
        :param filename: Path to the sqlite database

        :param network: Network name or chain id, partitions the records
        """
        assert isinstance(filename, Path)
        assert network, "Network name missing"
        self.filename = filename
        self.network = str(network)
        self.thread_connection_map = {}

    def __repr__(self):
        return f"<SQLiteDeploymentRecordStore {self.filename} {self.network}>"

    @property
    def conn(self) -> sqlite3.Connection:
        """One connection per thread"""
        thread_id = get_ident()
        if thread_id not in self.thread_connection_map:
            self.thread_connection_map[thread_id] = sqlite3.connect(self.filename)
            self.thread_connection_map[thread_id].execute("CREATE TABLE IF NOT EXISTS kv (key text unique, value text)")
        return self.thread_connection_map[thread_id]

    def _make_key(self, logical_name: str) -> str:
        assert type(logical_name) == str, f"Only string keys allowed, got {logical_name}"
        return f"{self.network}/{logical_name}"

    def get(self, logical_name: str) -> Optional[DeploymentRecord]:
        item = self.conn.execute("SELECT value FROM kv WHERE key = ?", (self._make_key(logical_name),)).fetchone()
        if item is None:
            return None
        return DeploymentRecord.from_json_friendly_dict(json.loads(item[0]))

    def put(self, record: DeploymentRecord):
        value = json.dumps(record.as_json_friendly_dict())
        self.conn.execute("REPLACE INTO kv (key, value) VALUES (?,?)", (self._make_key(record.logical_name), value))
        self.conn.commit()

    def names(self) -> list[str]:
        prefix = f"{self.network}/"
        c = self.conn.cursor()
        return [row[0][len(prefix) :] for row in c.execute("SELECT key FROM kv WHERE key LIKE ? ORDER BY key", (prefix + "%",))]

    def close(self):
        self.conn.commit()
        self.conn.close()
        del self.thread_connection_map[get_ident()]
