# SPDX-License-Identifier: MIT
"""
rfsppy.exceptions
=================

Error taxonomy for rfsppy.

All errors derive from :class:`RFspError`, which itself derives from
``ValueError`` so that callers catching ``ValueError`` for bad inputs
keep working.

Fatal (raised):

- :class:`EmptyReferenceSet`        – no reference points were supplied.
- :class:`CoordinateSystemMismatch` – points and grid use different CRS.
- :class:`InvalidGeometry`          – a coordinate is non-finite or an id
  is bound to conflicting locations.
- :class:`SchemaMismatch`           – blocks to be stacked (or a grid to
  be predicted on) do not share the expected columns.

Recoverable:

- :class:`NoContainingCell` – raised by strict single-point lookups. The
  matrix assembler does not raise it; it drops such rows and reports a
  count instead.
"""

from __future__ import annotations


class RFspError(ValueError):
    """Base class for all rfsppy errors."""


class EmptyReferenceSet(RFspError):
    """Raised when buffer distances are requested for zero points."""


class CoordinateSystemMismatch(RFspError):
    """Raised when points and grid are not in the same CRS."""


class InvalidGeometry(RFspError):
    """Raised when a reference point has an unusable coordinate."""


class NoContainingCell(RFspError):
    """Raised when a coordinate falls outside every grid cell."""


class SchemaMismatch(RFspError):
    """Raised when tables that must share columns do not."""


__all__ = [
    "RFspError",
    "EmptyReferenceSet",
    "CoordinateSystemMismatch",
    "InvalidGeometry",
    "NoContainingCell",
    "SchemaMismatch",
]
