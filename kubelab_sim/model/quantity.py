# kubelab_sim/model/quantity.py
from __future__ import annotations

import math
import re

from ..errors import CommandSyntaxError

MULTIPLIERS = {
    'Ki': 1024, 'Mi': 1024**2, 'Gi': 1024**3, 'Ti': 1024**4,
    'K': 1000, 'M': 1000**2, 'G': 1000**3, 'T': 1000**4,
}


def parse_storage(quantity: str | None) -> int:
    """Размер тома ("1Gi", "500Mi", "10G") -> байты."""
    if not quantity:
        raise CommandSyntaxError("size must not be empty")
    quantity = str(quantity).strip()
    suffix_match = re.search(r'[A-Za-z]+$', quantity)
    number_part, mult = quantity, 1
    if suffix_match:
        suffix = suffix_match.group(0)
        if suffix not in MULTIPLIERS:
            raise CommandSyntaxError(f'unknown size suffix "{suffix}" in "{quantity}"')
        number_part = quantity[:-len(suffix)]
        mult = MULTIPLIERS[suffix]
    try:
        value = float(number_part)
    except ValueError:
        raise CommandSyntaxError(f'invalid size "{quantity}"') from None
    if not math.isfinite(value * mult):
        raise CommandSyntaxError(f'size must be a finite number, got "{quantity}"')
    if value <= 0:
        raise CommandSyntaxError(f'size must be positive, got "{quantity}"')
    return int(value * mult)
