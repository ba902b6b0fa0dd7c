from __future__ import annotations

"""
Common API model types.

- Address:     ledger account, "aleo1" + 58 lowercase alphanumerics.
- FieldToken:  ledger field literal produced by the commitment engine.
- ProposalId:  unsigned 32-bit proposal identifier.

Validation here is syntactic only; business rules live in the services.
"""

import re
from typing import Annotated

from pydantic import AfterValidator, Field

ADDRESS_RE = re.compile(r"^aleo1[a-z0-9]{58}$")
U32_MAX = 2**32 - 1


def is_address(value: object) -> bool:
    return isinstance(value, str) and bool(ADDRESS_RE.match(value))


def _validate_address(v: str) -> str:
    v = v.strip()
    if not ADDRESS_RE.match(v):
        raise ValueError("address must be 'aleo1' followed by 58 lowercase alphanumeric characters")
    return v


def _validate_field(v: str) -> str:
    from ..commitment import is_field_token

    if not is_field_token(v):
        raise ValueError("value must be a field literal like '123field'")
    return v


Address = Annotated[str, AfterValidator(_validate_address)]
FieldToken = Annotated[str, AfterValidator(_validate_field)]
ProposalId = Annotated[int, Field(ge=0, le=U32_MAX)]


__all__ = ["Address", "FieldToken", "ProposalId", "ADDRESS_RE", "U32_MAX", "is_address"]
