"""
Record stream parsing and container access.
"""

from .sdf_parser import SdfRecordParser, RecordPolicy, RECORD_TERMINATOR, BLOCK_END
from .containers import CompressedContainerReader, ContainerKind, ContainerMember

__all__ = [
    "SdfRecordParser",
    "RecordPolicy",
    "RECORD_TERMINATOR",
    "BLOCK_END",
    "CompressedContainerReader",
    "ContainerKind",
    "ContainerMember",
]
