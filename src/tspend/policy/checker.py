# src/tspend/policy/checker.py
from __future__ import annotations

from tspend.chain.params import MAX_AMOUNT
from tspend.chain.script import is_null_data, is_unspendable
from tspend.chain.wire import TxOut, var_int_serialize_size
from tspend.errors import PolicyError

# Default minimum relay fee policy of a mempool, in atoms/kB.
DEFAULT_RELAY_FEE_PER_KB = 10_000

# Average size of a compressed P2PKH redeeming input.
_REDEEM_INPUT_SIZE = 165


def var_int_size(n: int) -> int:
    return var_int_serialize_size(n)


def is_dust_amount(amount: int, script_size: int, relay_fee_per_kb: int) -> bool:
    """Whether an output of ``amount`` with a ``script_size`` script is dust.

    Dust: the cost to the network of creating and later redeeming the output
    (output size plus an average redeeming input) exceeds 1/3 of the relay fee.
    """
    total_size = 8 + 2 + var_int_size(script_size) + script_size + _REDEEM_INPUT_SIZE
    return amount * 1000 // (3 * total_size) < relay_fee_per_kb


def is_dust_output(output: TxOut, relay_fee_per_kb: int) -> bool:
    # Outputs that solely carry data are exempt.
    if is_null_data(output.version, output.pk_script):
        return False
    if is_unspendable(output.value, output.pk_script):
        return True
    return is_dust_amount(output.value, len(output.pk_script), relay_fee_per_kb)


def check_output(output: TxOut, relay_fee_per_kb: int) -> None:
    """Raise PolicyError if ``output`` breaks value bounds or the dust policy."""
    if output.value < 0:
        raise PolicyError("negative_value", "transaction output amount is negative", {"value": output.value})
    if output.value > MAX_AMOUNT:
        raise PolicyError(
            "value_too_large", "transaction output amount exceeds maximum value", {"value": output.value}
        )
    if is_dust_output(output, relay_fee_per_kb):
        raise PolicyError("dust", "transaction output is dust", {"value": output.value})


def fee_for_serialize_size(relay_fee_per_kb: int, tx_serialize_size: int) -> int:
    """Required fee for a ``tx_serialize_size`` byte tx under ``relay_fee_per_kb``."""
    fee = relay_fee_per_kb * tx_serialize_size // 1000
    if fee == 0 and relay_fee_per_kb > 0:
        fee = relay_fee_per_kb
    return min(max(fee, 0), MAX_AMOUNT)
