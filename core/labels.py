"""
Address label store.
Maps known addresses (exchange wallets, bridges, treasuries) to display names.
Built once at startup and never mutated afterwards.
"""
import json
import logging
import re
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Union

logger = logging.getLogger(__name__)

ADDRESS_RE = re.compile(r"(?:0x)?([0-9a-f]{40})")

# Shipped with the project, found regardless of the working directory
BUNDLED_LABEL_PATH = Path(__file__).resolve().parent.parent / "data" / "labels.json"

DEFAULT_LABEL_PATHS = (
    "data/labels.json",
    "./data/labels.json",
    "../data/labels.json",
    BUNDLED_LABEL_PATH,
)


def normalize_address(address: str) -> Optional[str]:
    """
    Normalize an EVM address to 0x + 40 lower-case hex chars.

    Returns None if the input is not an address.
    """
    if not isinstance(address, str):
        return None
    match = ADDRESS_RE.fullmatch(address.strip().lower())
    if not match:
        return None
    return "0x" + match.group(1)


class LabelResolver:
    """Read-only, case-insensitive address → label lookup."""

    def __init__(self, labels: Optional[Mapping[str, str]] = None):
        table = {}
        for address, label in (labels or {}).items():
            normalized = normalize_address(address)
            if normalized is None or not isinstance(label, str) or not label:
                logger.debug(f"Skipping invalid label entry: {address!r} -> {label!r}")
                continue
            table[normalized] = label
        self._labels = MappingProxyType(table)

    @classmethod
    def from_mapping(cls, labels: Mapping[str, str]) -> "LabelResolver":
        return cls(labels)

    @classmethod
    def from_json(cls, text: str) -> "LabelResolver":
        """Load labels from a JSON object of address -> label."""
        data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError("label data must be a JSON object")
        return cls(data)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "LabelResolver":
        return cls.from_json(Path(path).read_text(encoding="utf-8"))

    @classmethod
    def load_with_defaults(cls, paths: Iterable[Union[str, Path]] = DEFAULT_LABEL_PATHS) -> "LabelResolver":
        """
        Try each candidate file in order and return the first that loads.
        Falls back to an empty resolver; no labels is a valid setup.
        """
        for path in paths:
            if not Path(path).is_file():
                continue
            try:
                resolver = cls.from_file(path)
            except (OSError, ValueError) as e:
                logger.warning(f"Failed to load labels from {path}: {e}")
                continue
            logger.info(f"Loaded {len(resolver)} address labels from {path}")
            return resolver

        logger.warning("No address label file found, continuing without labels")
        return cls()

    @property
    def labels(self) -> Mapping[str, str]:
        return self._labels

    def resolve(self, address: str) -> Optional[str]:
        """Label for an address, or None if it is unknown."""
        normalized = normalize_address(address)
        if normalized is None:
            return None
        return self._labels.get(normalized)

    def __contains__(self, address: object) -> bool:
        return isinstance(address, str) and self.resolve(address) is not None

    def __len__(self) -> int:
        return len(self._labels)
