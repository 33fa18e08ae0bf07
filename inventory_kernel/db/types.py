"""
Module: inventory_kernel.db.types
Responsibility: Annotated type aliases for ledger column types, so that every
    model declares quantities, codes and hashes identically.
Architecture position: Kernel > DB.  May be imported by models/.  MUST NOT
    import from models/, services/, selectors/ or domain/.

Invariants enforced:
    - Carton and pallet quantities are whole numbers (Integer), never floats.
    - Batch lots are bounded to 100 characters.
"""

from typing import Annotated

from sqlalchemy import BigInteger, Integer, String

# Whole cartons / pallets / units-per-carton
Quantity = Annotated[int, Integer]

# Monotonic sequence number for ordering
Sequence = Annotated[int, BigInteger]

# SHA-256 hash as hex string (64 characters)
PayloadHash = Annotated[str, String(64)]

# Short identifier strings (codes, enum values)
ShortCode = Annotated[str, String(50)]

# Batch / lot label
BatchLot = Annotated[str, String(100)]

# Free-text reference fields
ReferenceText = Annotated[str, String(255)]

# Long text for notes and error messages
LongText = Annotated[str, String(4000)]

MAX_BATCH_LOT_LENGTH = 100
