"""
Address and data bit permutations for the HP 85620A mass memory module.

The module's SRAM is wired with scrambled address and data lines. A raw dump
therefore has to be read back through the inverse wiring: byte ``i`` of the
logical image lives at ``address_permute(i)`` in the dump, with its data bits
rearranged by ``data_permute``.
"""

from __future__ import annotations

# Bits 15-16 select the SRAM bank and are wired straight through.
BANK_MASK = 0x18000
ADDRESS_BITS = 18
ADDRESS_MASK = (1 << ADDRESS_BITS) - 1

# (shift, mask) pairs; a positive shift moves bits left, negative moves right.
ADDRESS_TERMS = (
    (10, 0x400),
    (10, 0x800),
    (7, 0x200),
    (10, 0x2000),
    (10, 0x4000),
    (2, 0x80),
    (-1, 0x20),
    (-4, 0x8),
    (-4, 0x10),
    (-3, 0x40),
    (-2, 0x100),
    (1, 0x1000),
    (-11, 0x2),
    (-11, 0x4),
    (-14, 0x1),
)


def address_permute(offset: int) -> int:
    """Map a logical byte offset to its physical offset in the raw dump."""
    offset &= ADDRESS_MASK
    result = offset & BANK_MASK
    for shift, mask in ADDRESS_TERMS:
        if shift >= 0:
            result |= (offset << shift) & mask
        else:
            result |= (offset >> -shift) & mask
    return result


def data_permute(value: int) -> int:
    """Rearrange the data bits of a single byte read from the dump."""
    return (
        (value >> 7)
        | ((value << 1) & 0x02)
        | ((value << 1) & 0x04)
        | ((value << 1) & 0x08)
        | ((value >> 2) & 0x10)
        | (value & 0x20)
        | ((value << 2) & 0x40)
        | ((value << 4) & 0x80)
    ) & 0xFF
