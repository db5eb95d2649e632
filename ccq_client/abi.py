"""
ABI helpers for eth_call queries.
"""
from typing import Any, Dict, List, Sequence, Tuple

from eth_abi import decode, encode
from eth_abi.exceptions import EncodingError
from eth_utils import function_abi_to_4byte_selector


def _abi_type(param: Dict[str, Any]) -> str:
    """Canonical type string of an ABI parameter, expanding tuples."""
    typ = param["type"]
    if typ.startswith("tuple"):
        inner = ",".join(_abi_type(c) for c in param.get("components", []))
        return f"({inner}){typ[len('tuple'):]}"
    return typ


class AbiCodec:
    """
    Encodes call data and decodes results for the functions of one contract ABI.

    An instance is a valid result decoder: codec(method_name, raw) decodes
    the outputs of method_name.
    """

    def __init__(self, abi: Sequence[Dict[str, Any]]):
        self._functions = {
            entry["name"]: entry
            for entry in abi
            if entry.get("type", "function") == "function" and "name" in entry
        }

    def _function(self, method: str) -> Dict[str, Any]:
        try:
            return self._functions[method]
        except KeyError:
            raise ValueError(f"Method '{method}' not found in ABI")

    def input_types(self, method: str) -> List[str]:
        return [_abi_type(p) for p in self._function(method).get("inputs", [])]

    def output_types(self, method: str) -> List[str]:
        return [_abi_type(p) for p in self._function(method).get("outputs", [])]

    def encode_call(self, method: str, args: Sequence[Any] = ()) -> bytes:
        """4-byte selector followed by the ABI-encoded arguments."""
        entry = self._function(method)
        try:
            encoded = encode(self.input_types(method), list(args))
        except EncodingError as e:
            raise ValueError(f"Invalid arguments for {method}: {e}") from e
        return function_abi_to_4byte_selector(entry) + encoded

    def decode_output(self, method: str, raw: bytes) -> Tuple[Any, ...]:
        return decode(self.output_types(method), raw)

    def __call__(self, method: str, raw: bytes) -> Tuple[Any, ...]:
        return self.decode_output(method, raw)


# Read-only subset of the WETH9 ABI
WETH_ABI = [
    {
        "constant": True,
        "inputs": [],
        "name": "name",
        "outputs": [{"name": "", "type": "string"}],
        "payable": False,
        "stateMutability": "view",
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "totalSupply",
        "outputs": [{"name": "", "type": "uint256"}],
        "payable": False,
        "stateMutability": "view",
        "type": "function",
    },
]

WETH_ADDRESS = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"
