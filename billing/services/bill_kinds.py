"""
Per-type bill behaviour.

Each bill_type maps to one BillKind carrying what differs between types:
the number prefix, whether its periods are protected by the overlap guard,
and the label of the default line item.
"""
import random
import secrets
from dataclasses import dataclass
from datetime import date
from typing import Dict, Union

from billing.database.models import BillType


@dataclass(frozen=True)
class BillKind:
    bill_type: BillType
    type_code: str
    default_line: str
    # Ad-hoc charges may share a period with each other
    overlap_exempt: bool = False

    def bill_number(self, period: date) -> str:
        """B-RNT-202601-1234AB style: type, period, short random suffix."""
        digits = f"{random.randint(0, 9999):04d}"
        suffix = secrets.token_hex(2).upper()
        return f"B-{self.type_code}-{period.year}{period.month:02d}-{digits}{suffix}"


RentBill = BillKind(BillType.monthly_rent, "RNT", "Room rent")
UtilityBill = BillKind(BillType.utilities, "UTL", "Utilities")
OtherBill = BillKind(BillType.other, "OTH", "Other charge", overlap_exempt=True)

_KINDS: Dict[str, BillKind] = {kind.bill_type.value: kind for kind in (RentBill, UtilityBill, OtherBill)}


def kind_for(bill_type: Union[BillType, str]) -> BillKind:
    key = bill_type.value if isinstance(bill_type, BillType) else bill_type
    try:
        return _KINDS[key]
    except KeyError:
        raise ValueError(f"Unknown bill type: {bill_type}")
