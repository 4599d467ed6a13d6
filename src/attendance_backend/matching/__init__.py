"""
Fingerprint Matching Module
===========================
Decodes captures, scores them with block-wise SSIM and picks the best
enrolled candidate.
"""

from .imaging import decode_image, encode_png, to_data_url
from .matcher import (
    DEFAULT_THRESHOLD,
    BiometricTemplate,
    CandidateMatcher,
    CaptureSample,
    MatchResult,
    match,
)
from .ssim import DEFAULT_BLOCK_SIZE, score

__all__ = [
    'decode_image',
    'encode_png',
    'to_data_url',
    'score',
    'match',
    'BiometricTemplate',
    'CandidateMatcher',
    'CaptureSample',
    'MatchResult',
    'DEFAULT_BLOCK_SIZE',
    'DEFAULT_THRESHOLD',
]
