# pairstore

`pairstore` is a storage node for a multi-tenant key-value store, built as
a log-structured merge tree:

- every write goes first to an append-only **commit log** of JSON lines,
- then into an in-memory **memtable**, a sorted skip list,
- a memtable is flushed to an immutable on-disk **SSTable** (data file,
  `.idx` index and `.bloom` **Bloom filter**),
- an adaptive LRU/LFU **cache** sits in front of the read path,
- **vector clocks** track causality between coordinators.

A compaction service decides when SSTable levels need merging, and a
streaming manager tracks the copying of hash ranges of keys to other nodes.

## Installation

```
pip install .
```

Python 3.10 or later is needed. The only runtime dependency is PyYAML,
used to load configuration files.

## Quick start

```python
from pairstore.cache import CacheConfig, CacheService
from pairstore.commitlog import CommitLogConfig, CommitLogService
from pairstore.memtable import MemTableConfig, MemTableService
from pairstore.model import VectorClock, VectorClockEntry
from pairstore.sstable_service import SSTableServiceConfig, SSTableService
from pairstore.storage import KeyNotFoundError, StorageService

commit_log = CommitLogService(CommitLogConfig(segment_size=64 << 20), "data/commitlog")
memtable = MemTableService(MemTableConfig(max_size=64 << 20, flush_threshold=60_000_000))
sstables = SSTableService(SSTableServiceConfig(bloom_filter_fp=0.01), "data/sstables")
cache = CacheService(CacheConfig(max_size=16 << 20, frequency_weight=0.5, recency_weight=0.5))

store = StorageService(commit_log, memtable, sstables, cache, node_id="node-1")

clock = VectorClock([VectorClockEntry("coordinator-1", 1)])
store.write("tenant-a", "user:42", b"hello", clock)

response = store.read("tenant-a", "user:42")
print(response.value, response.source)  # b'hello' cache

try:
    store.read("tenant-a", "missing")
except KeyNotFoundError:
    print("no such key")

store.flush()        # write the memtable out as a new L0 SSTable
commit_log.close()
```

Values are `bytes`. Keys are stored under the composite form
`"{tenant_id}:{key}"`, built by `pairstore.storage.build_key`.
`pairstore.storage.compute_key_hash` gives the 64-bit hash (the first eight
bytes of SHA-256, big-endian) used for consistent-hash ranges.

`read` looks in the cache, then the memtable, then the SSTables, and says in
`source` where the value came from. `write` raises `ValidationError` when the
tenant, key or value is missing; failures of the commit log or memtable raise
`StorageError`. When the memtable reaches its flush threshold, `write` starts
a flush in a background thread.

## Recovery

On restart, replay the commit log segments into a fresh memtable:

```python
with CommitLogService(CommitLogConfig(segment_size=64 << 20), "data/commitlog") as log:
    replayed = log.recover(memtable)
```

A background thread checks once a minute whether the current segment has
reached `segment_size` and, if so, starts a new one; `check_rotation` does
the same on demand.

## Configuration

`pairstore.config.load_config` reads a YAML file, fills in defaults and
validates the result. Durations are written as strings such as `"10s"`,
`"250ms"` or `"1m30s"`; `pairstore.config.parse_duration` accepts the same
strings.

```yaml
server:
  node_id: node-1
  port: 50052
storage:
  data_dir: /var/lib/pairdb
cache:
  max_size: 16777216
```

If the file cannot be read or parsed, or its settings are invalid (no
`server.node_id`, a port outside 1–65535, or `max_disk_usage` outside 0–1),
`load_config` raises `ConfigError`.

## Building blocks

- `pairstore.skiplist.SkipList`: an ordered string-keyed map with
  `insert`, `search`, `delete`, `items`, `in`, `len()` and ordered iteration.
- `pairstore.bloom_filter.BloomFilter`: an FNV double-hashing Bloom filter,
  written with `write_to` and read back with `read_from` or `load`.
- `pairstore.sstable.SSTableWriter` and `SSTableReader`: write and read the
  SSTable files; both are context managers.
- `pairstore.vector_clock`: `compare`, `merge` and `increment`.
- `pairstore.health.HealthChecker`: checks disk space, the data directory
  and file descriptors, and exposes `live`, `ready`, `status()` and
  `checks()`; `run` repeats the checks until a stop event is set.
- `pairstore.compaction.CompactionService`: works out when each SSTable
  level needs compaction and queues jobs for its worker threads.
- `pairstore.streaming.StreamingManager`: tracks streams to other nodes
  and runs the copy → stream → sync lifecycle for each one. Set its
  `sender` to deliver keys and `remote_checksum` to fetch a target's range
  checksum.

## What the package does not do

- It has no network server or client. Nothing listens for requests, and
  there is no cluster membership or metrics endpoint; the `gossip` and
  `metrics` configuration sections are parsed but not used.
- The streaming manager sends nothing over the network on its own. Without
  a `sender` it only logs each key, and without `remote_checksum` it takes
  the target to match the local checksum.
- Compaction does not rewrite data. `execute_compaction` returns metadata
  for an output table, but it does not read the input tables, write an
  output file or change which tables are registered at each level.
- The memory-pressure health check always reports healthy.

## Running the tests

```
pip install ".[test]"
pytest
```