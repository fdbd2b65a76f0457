"""Contract ABIs shipped with the orchestrator."""

from importlib import resources
from typing import Any, List
import json


def load_contract_abi(filename: str) -> List[Any]:
    """Load an ABI JSON file from the contracts package."""
    with resources.files(__package__).joinpath(filename).open("r", encoding="utf-8") as fh:
        return json.load(fh)


__all__ = ["load_contract_abi"]
