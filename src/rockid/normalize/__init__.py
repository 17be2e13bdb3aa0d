"""Response normalization: provider text in, `NormalizedRecord` out."""

from .extraction import extract_fenced, find_json_object, strip_noise
from .normalizer import (
    DEFAULT_CONFIDENCE,
    normalize,
    parse_confidence,
    split_list,
    synthesize_fun_fact,
)
from .passes import REPAIR_PASSES, RepairPass, apply_repairs
from .types import NormalizedRecord, RecordShape

__all__ = [
    "DEFAULT_CONFIDENCE",
    "REPAIR_PASSES",
    "NormalizedRecord",
    "RecordShape",
    "RepairPass",
    "apply_repairs",
    "extract_fenced",
    "find_json_object",
    "normalize",
    "parse_confidence",
    "split_list",
    "strip_noise",
    "synthesize_fun_fact",
]
