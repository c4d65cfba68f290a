"""Epoch-millisecond timestamps, the unit every swarm table and event uses."""

import time


def now_ms() -> int:
    return int(time.time() * 1000)
