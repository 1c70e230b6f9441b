"""Log-structured key-value storage node: commit log, memtable, SSTables, cache and vector clocks."""

__version__ = "0.1.0"

__all__ = [
    "bloom_filter",
    "cache",
    "commitlog",
    "compaction",
    "config",
    "health",
    "memtable",
    "model",
    "skiplist",
    "sstable",
    "sstable_service",
    "storage",
    "streaming",
    "vector_clock",
]