"""fetchbridge — HTTP fetches for a deterministic ledger via a trusted relayer."""

__version__ = "0.1.0"
