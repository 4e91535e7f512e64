from .archive import ArchiveBuilder, build_archive, find_repo_root, parse_compression_level, parse_exclusions
from .ledger import AttemptLedger

__all__ = [
    "ArchiveBuilder",
    "AttemptLedger",
    "build_archive",
    "find_repo_root",
    "parse_compression_level",
    "parse_exclusions",
]
