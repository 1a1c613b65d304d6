from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Iterable

import numpy as np


@dataclass(frozen=True)
class SeedContext:
    """A string seed and the integer entropy derived from it."""

    seed: str
    entropy: int

    def block_rng(self, block_index: int) -> np.random.Generator:
        """Independent PCG64 stream for one fixed-size block of trials."""
        ss = np.random.SeedSequence(entropy=self.entropy, spawn_key=(int(block_index),))
        return np.random.Generator(np.random.PCG64(ss))


def seed_from_text(text: str) -> SeedContext:
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    return SeedContext(seed=text, entropy=int.from_bytes(digest[:16], "big"))


def snapshot_id(item_ids: Iterable[str]) -> str:
    """Stable identifier of an item snapshot, independent of input order."""
    keys = sorted(str(i) for i in item_ids)
    digest = hashlib.sha256(",".join(keys).encode("utf-8")).hexdigest()
    return f"snapshot_{digest[:12]}_{len(keys)}"
