# placement_engine/core/errors.py

# -----------------------------
# Base Errors
# -----------------------------

class PlacementError(Exception):
    """Base class for all placement engine errors."""
    pass


# -----------------------------
# Validation / Configuration Errors
# -----------------------------

class WorkloadConfigError(PlacementError):
    """Workload configuration is missing required values or is malformed."""
    pass


class SecretResolutionFailure(PlacementError):
    """One or more required secrets could not be resolved.

    Fatal: the Workload Unit must not start. Only secret *names* are carried.
    """

    def __init__(self, missing):
        self.missing = sorted(missing)
        super().__init__(f"Unresolved secrets: {', '.join(self.missing)}")


# -----------------------------
# Scheduling Errors
# -----------------------------

class InvalidStateTransition(PlacementError):
    """Illegal placement state transition attempted."""
    pass


class CapacityExhausted(PlacementError):
    """No host in the capacity pool can accommodate the Workload Unit."""
    pass


class AttachmentConflict(PlacementError):
    """Persistent volume is attached to another host."""

    def __init__(self, volume_id: str, attached_to: str | None, requested_by: str):
        self.volume_id = volume_id
        self.attached_to = attached_to
        self.requested_by = requested_by
        super().__init__(
            f"Volume {volume_id} attached to {attached_to}, "
            f"cannot attach to {requested_by}"
        )


class HostRegistrationError(PlacementError):
    """Host registration request is missing required fields."""
    pass


class PreconditionFailure(PlacementError):
    """Attach-then-start ordering violated (storage not attached)."""
    pass


class RuntimeUnavailable(PlacementError):
    """Workload runtime on a host could not be reached."""
    pass


# -----------------------------
# Health / Exposure Errors
# -----------------------------

class HealthCheckTimeout(PlacementError):
    """Health probe was not answered within its timeout."""
    pass


class NameBindingFailure(PlacementError):
    """DNS upsert failed."""
    pass


# -----------------------------
# Persistence Errors
# -----------------------------

class PlacementPersistenceError(PlacementError):
    pass


class PlacementConcurrencyError(PlacementPersistenceError):
    """A second active placement was about to be stored."""
    pass


class PlacementNotFound(PlacementPersistenceError):
    pass
