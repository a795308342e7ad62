class GateEngineError(Exception):
    """Base exception for the gate engine."""

    pass


class UnknownGateTypeError(GateEngineError):
    """Raised when a gate type has no entry in the threshold table."""

    def __init__(self, gate_type: str):
        self.gate_type = gate_type
        super().__init__(f"Unknown gate type '{gate_type}'")


class GateStateConflictError(GateEngineError):
    """Raised when a concurrent evaluation wrote the same gate state first."""

    def __init__(self, merchant_id: str, gate_type: str):
        self.merchant_id = merchant_id
        self.gate_type = gate_type
        super().__init__(f"Concurrent update on gate '{gate_type}' for merchant {merchant_id}")


class GateLockTimeoutError(GateEngineError):
    """Raised when the per-gate evaluation lock cannot be acquired in time."""

    def __init__(self, merchant_id: str, gate_type: str, waited: float):
        self.merchant_id = merchant_id
        self.gate_type = gate_type
        self.waited = waited
        super().__init__(
            f"Could not lock gate '{gate_type}' for merchant {merchant_id} after {waited:.0f}s"
        )


class BaselineNotFoundError(GateEngineError):
    """Raised when a comparison is requested before any baseline exists."""

    def __init__(self, merchant_id: str):
        self.merchant_id = merchant_id
        super().__init__(f"No baseline found for merchant {merchant_id}")
