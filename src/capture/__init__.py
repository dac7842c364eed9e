"""Change capture over the raw append log.

This package tracks per-consumer offsets and exposes pending records.
It owns the atomic commit that advances an offset with its write.
"""
