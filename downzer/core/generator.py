"""
Combination Generator

Expands a range and wordlists into a lazy, restartable sequence of
combinations and renders concrete targets from a template.

Placeholders:
- FUZZR          bound to the range
- FUZZW1..FUZZWn bound to the wordlists by position

Nothing proportional to the number of combinations is ever materialised:
combinations are decoded from a logical index on demand, and shuffling is a
seeded bijection over the index space.
"""

import math
import random
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, Iterator, List, Optional, Sequence, Tuple

from loguru import logger

from .exceptions import PlaceholderError, RangeFormatError, WordlistError


RANGE_PLACEHOLDER = "FUZZR"
WORDLIST_PREFIX = "FUZZW"

# Longest match first: FUZZW10 must not be read as FUZZW1 + "0"
PLACEHOLDER_RE = re.compile(r"FUZZR|FUZZW(\d+)")

_RANGE_RE = re.compile(r"^\s*(\d+)\s*-\s*(\d+)\s*$")

JOIN_TOKEN = "+"

Combination = Dict[str, str]


# =========================================================================
# Input parsing
# =========================================================================

def parse_range(spec: str) -> Tuple[int, int]:
    """
    Parse an inclusive range "start-end".

    Raises:
        RangeFormatError: malformed spec or end < start
    """
    match = _RANGE_RE.match(spec or "")
    if not match:
        raise RangeFormatError(f"Invalid range format: {spec}. Expected: start-end")
    start, end = int(match.group(1)), int(match.group(2))
    if end < start:
        raise RangeFormatError(f"Invalid range: {spec} (end < start)")
    return start, end


def _split_items(text: str) -> List[str]:
    return [item.strip() for item in text.split(",") if item.strip()]


def read_wordlist(token: str) -> List[str]:
    """
    Resolve one wordlist token.

    A token naming an existing file is read line by line (each line may hold
    several comma-separated items); anything else is an inline
    comma-separated list.
    """
    if token == JOIN_TOKEN:
        return [JOIN_TOKEN]

    path = Path(token)
    if path.is_file():
        try:
            with open(path, "r", encoding="utf-8", errors="replace") as f:
                items = []
                for line in f:
                    items.extend(_split_items(line))
                return items
        except OSError as e:
            raise WordlistError(f"Cannot read wordlist: {e}", path=token)

    return _split_items(token)


def build_wordlists(tokens: Sequence[str]) -> List[List[str]]:
    """
    Resolve wordlist tokens into dimensions.

    A "+" token between two lists concatenates them into a single dimension:
    ["a,b", "+", "c"] -> [["a", "b", "c"]].
    """
    raw = [read_wordlist(token) for token in tokens]

    def is_join(items: List[str]) -> bool:
        return items == [JOIN_TOKEN]

    dimensions = []
    i = 0
    while i < len(raw):
        if is_join(raw[i]):
            raise WordlistError("'+' without adjacent lists")

        combined = list(raw[i])
        j = i + 1
        while j < len(raw) and is_join(raw[j]):
            if j + 1 >= len(raw) or is_join(raw[j + 1]):
                raise WordlistError("'+' at end without following list")
            combined.extend(raw[j + 1])
            j += 2

        dimensions.append(combined)
        i = j

    return dimensions


def parse_exclusions(text: Optional[str]) -> FrozenSet[str]:
    """Exclusion tokens separated by commas and/or spaces."""
    if not text:
        return frozenset()
    return frozenset(t for t in re.split(r"[,\s]+", text) if t)


def find_placeholders(template: str) -> List[str]:
    """Placeholders in order of first appearance."""
    seen = []
    for match in PLACEHOLDER_RE.finditer(template):
        name = match.group(0)
        if name not in seen:
            seen.append(name)
    return seen


def render(template: str, combination: Combination) -> str:
    """Substitute every placeholder of the template with its combination value."""
    return PLACEHOLDER_RE.sub(
        lambda m: combination.get(m.group(0), m.group(0)),
        template,
    )


# =========================================================================
# Spec
# =========================================================================

@dataclass(frozen=True)
class CombinationSpec:
    """Serialisable generator inputs, persisted with the task."""

    range: Optional[Tuple[int, int]] = None
    wordlists: Tuple[Tuple[str, ...], ...] = ()
    exclude: FrozenSet[str] = field(default_factory=frozenset)
    parallel: bool = False
    shuffle: bool = False
    seed: Optional[int] = None

    def with_seed(self) -> "CombinationSpec":
        """Fix the run-scoped shuffle seed (no-op when not shuffling or already fixed)."""
        if not self.shuffle or self.seed is not None:
            return self
        return CombinationSpec(
            range=self.range,
            wordlists=self.wordlists,
            exclude=self.exclude,
            parallel=self.parallel,
            shuffle=True,
            seed=random.SystemRandom().randrange(2 ** 32),
        )

    def to_dict(self) -> dict:
        return {
            "range": list(self.range) if self.range else None,
            "wordlists": [list(w) for w in self.wordlists],
            "exclude": sorted(self.exclude),
            "parallel": self.parallel,
            "shuffle": self.shuffle,
            "seed": self.seed,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CombinationSpec":
        rng = data.get("range")
        return cls(
            range=(int(rng[0]), int(rng[1])) if rng else None,
            wordlists=tuple(tuple(w) for w in data.get("wordlists") or ()),
            exclude=frozenset(data.get("exclude") or ()),
            parallel=data.get("parallel", False),
            shuffle=data.get("shuffle", False),
            seed=data.get("seed"),
        )


# =========================================================================
# Combination space
# =========================================================================

class _AffinePermutation:
    """Seeded bijection i -> (a*i + b) mod n over [0, n)."""

    def __init__(self, n: int, seed: int):
        self.n = n
        rng = random.Random(seed)
        if n <= 1:
            self.a, self.b = 1, 0
            return
        a = rng.randrange(1, n)
        while math.gcd(a, n) != 1:
            a = rng.randrange(1, n)
        self.a = a
        self.b = rng.randrange(n)

    def __call__(self, i: int) -> int:
        return (self.a * i + self.b) % self.n


class CombinationSpace:
    """
    Lazy, finite, restartable sequence of combinations.

    Dimensions are ordered range first, then FUZZW1..n. In cross-product
    mode the last dimension varies fastest; in parallel mode all dimensions
    advance in lockstep and the length is the shortest dimension.
    """

    def __init__(
        self,
        dimensions: Sequence[Tuple[str, Sequence]],
        parallel: bool = False,
        seed: Optional[int] = None,
    ):
        self.dimensions = list(dimensions)
        self.parallel = parallel
        self.seed = seed

        lengths = [len(values) for _, values in self.dimensions]
        if not lengths:
            self._size = 1
        elif parallel:
            self._size = min(lengths)
        else:
            self._size = math.prod(lengths)

        self._permute = _AffinePermutation(self._size, seed) if seed is not None else None

    @classmethod
    def from_spec(cls, spec: CombinationSpec, template: Optional[str] = None) -> "CombinationSpace":
        """
        Build the space for a spec, validating it against the template.

        Raises:
            PlaceholderError: a template placeholder has no dimension bound to it
        """
        dimensions = []
        if spec.range is not None:
            start, end = spec.range
            dimensions.append((RANGE_PLACEHOLDER, range(start, end + 1)))

        for i, words in enumerate(spec.wordlists, start=1):
            kept = [w for w in words if w not in spec.exclude]
            dimensions.append((f"{WORDLIST_PREFIX}{i}", kept))

        if template is not None:
            bound = {name for name, _ in dimensions}
            used = find_placeholders(template)
            for name in used:
                if name not in bound:
                    raise PlaceholderError(
                        f"Placeholder {name} has no range or wordlist",
                        placeholder=name,
                    )
            for name in bound - set(used):
                logger.warning(f"[Generator] {name} is supplied but not used in the template")

        return cls(dimensions, parallel=spec.parallel, seed=spec.seed if spec.shuffle else None)

    @property
    def names(self) -> List[str]:
        return [name for name, _ in self.dimensions]

    def __len__(self) -> int:
        return self._size

    def _decode(self, index: int) -> Combination:
        if self.parallel:
            return {name: str(values[index]) for name, values in self.dimensions}

        combination = {}
        for name, values in reversed(self.dimensions):
            index, digit = divmod(index, len(values))
            combination[name] = str(values[digit])
        return combination

    def __getitem__(self, index: int) -> Combination:
        if index < 0:
            index += self._size
        if not 0 <= index < self._size:
            raise IndexError(f"combination index out of range: {index}")
        if self._permute is not None:
            index = self._permute(index)
        return self._decode(index)

    def iter_from(self, offset: int = 0) -> Iterator[Combination]:
        """Iterate starting at a logical offset (resume point)."""
        for index in range(max(offset, 0), self._size):
            yield self[index]

    def __iter__(self) -> Iterator[Combination]:
        return self.iter_from(0)


class TargetStream:
    """
    Pull-based stream of (logical index, concrete target) from an offset.

    `position` is the logical index of the next target to be pulled, i.e.
    the number of combinations dispatched so far.
    """

    def __init__(self, template: str, space: CombinationSpace, offset: int = 0):
        self.template = template
        self.space = space
        self.offset = offset
        self.position = offset

    @property
    def total(self) -> int:
        return len(self.space)

    @property
    def remaining(self) -> int:
        return max(self.total - self.position, 0)

    def __iter__(self) -> "TargetStream":
        return self

    def __next__(self) -> Tuple[int, str]:
        if self.position >= self.total:
            raise StopIteration
        index = self.position
        target = render(self.template, self.space[index])
        self.position += 1
        return index, target
