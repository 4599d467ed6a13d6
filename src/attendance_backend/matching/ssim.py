"""
Block-wise Structural Similarity
================================
Compares two grayscale fingerprint rasters of identical size.

The grid is cut into non-overlapping ``block_size`` x ``block_size`` blocks
(the last row/column of blocks is clipped to the image bounds). For every
block the luminance means, sample variances and covariance feed the SSIM
formula; the score is the mean over all blocks.

Per-block statistics are computed from block sums produced by
``numpy.add.reduceat``, so the whole score is one map-then-reduce over block
coordinates with no shared accumulator.
"""

import numpy as np

from ..errors import IncompatibleImage

DEFAULT_BLOCK_SIZE = 8

# Stabilizing constants for an 8-bit dynamic range: (0.01*255)^2, (0.03*255)^2
C1 = 6.5025
C2 = 58.5225


def _validate_pair(image_a, image_b):
    a = np.asarray(image_a, dtype=np.float64)
    b = np.asarray(image_b, dtype=np.float64)

    if a.ndim != 2 or b.ndim != 2:
        raise IncompatibleImage(f"Expected 2-D grayscale rasters, got {a.shape} and {b.shape}")
    if a.shape != b.shape:
        raise IncompatibleImage(
            f"Image dimensions differ: {a.shape[1]}x{a.shape[0]} vs {b.shape[1]}x{b.shape[0]}"
        )
    if a.size == 0:
        raise IncompatibleImage("Cannot compare empty images")
    return a, b


def block_starts(length: int, block_size: int) -> np.ndarray:
    """Start offsets of the blocks along one axis."""
    return np.arange(0, length, block_size)


def _block_sums(values: np.ndarray, row_starts: np.ndarray, col_starts: np.ndarray) -> np.ndarray:
    return np.add.reduceat(np.add.reduceat(values, row_starts, axis=0), col_starts, axis=1)


def ssim_map(image_a, image_b, block_size: int = DEFAULT_BLOCK_SIZE) -> np.ndarray:
    """
    Per-block SSIM values.

    Returns:
        Array of shape (ceil(h / block_size), ceil(w / block_size))

    Raises:
        IncompatibleImage: If the rasters are not 2-D, empty or differently sized
        ValueError: If block_size is not a positive integer
    """
    if int(block_size) != block_size or block_size < 1:
        raise ValueError(f"block_size must be a positive integer, got {block_size!r}")
    block_size = int(block_size)

    a, b = _validate_pair(image_a, image_b)
    height, width = a.shape

    rows = block_starts(height, block_size)
    cols = block_starts(width, block_size)
    row_lengths = np.diff(np.append(rows, height))
    col_lengths = np.diff(np.append(cols, width))
    counts = np.outer(row_lengths, col_lengths).astype(np.float64)

    mu_a = _block_sums(a, rows, cols) / counts
    mu_b = _block_sums(b, rows, cols) / counts

    # Single-pixel blocks have no spread: N - 1 would be zero
    has_spread = counts > 1
    dof = np.where(has_spread, counts - 1, 1.0)

    var_a = np.where(has_spread, (_block_sums(a * a, rows, cols) - counts * mu_a * mu_a) / dof, 0.0)
    var_b = np.where(has_spread, (_block_sums(b * b, rows, cols) - counts * mu_b * mu_b) / dof, 0.0)
    cov_ab = np.where(has_spread, (_block_sums(a * b, rows, cols) - counts * mu_a * mu_b) / dof, 0.0)

    numerator = (2 * mu_a * mu_b + C1) * (2 * cov_ab + C2)
    denominator = (mu_a * mu_a + mu_b * mu_b + C1) * (var_a + var_b + C2)
    return numerator / denominator


def score(image_a, image_b, block_size: int = DEFAULT_BLOCK_SIZE) -> float:
    """
    Mean block SSIM between two images, roughly in [-1, 1].

    Identical images score 1.0. Deterministic and side-effect free.
    """
    return float(np.mean(ssim_map(image_a, image_b, block_size)))
