class MigrationError(Exception):
    """Base class for all migration engine errors.
    """
    pass


class ConfigurationError(MigrationError):
    """Malformed step sequence or configuration, nothing is run.
    """
    pass


class LedgerError(MigrationError):
    """Ledger invariant violation.
    """
    pass


class ConflictError(LedgerError):
    """A record already exists for a (network_id, step_index) pair.
    """

    def __init__(self, network_id, step_index):
        super().__init__('Step {0} is already recorded for network {1}'.format(step_index, network_id))
        self.network_id = network_id
        self.step_index = step_index


class LedgerOrderError(LedgerError):
    """A record would leave a gap in the completed prefix of a network.
    """
    pass


class NotFoundError(MigrationError, LookupError):
    """A contract artifact or deployed instance does not exist.
    """
    pass


class UnresolvedLinkError(MigrationError):
    """Bytecode still contains library placeholders with no address to link.
    """

    def __init__(self, contract_name, libraries):
        super().__init__('Unresolved libraries for {0}: {1}'.format(contract_name, ', '.join(sorted(libraries))))
        self.contract_name = contract_name
        self.libraries = set(libraries)


class DeployError(MigrationError):
    """A deployment transaction could not be confirmed.

    :ivar tx_hash: Hash of the submitted transaction, None if submission itself failed
    """

    def __init__(self, message, tx_hash=None):
        super().__init__(message)
        self.tx_hash = tx_hash


class ConfirmationTimeoutError(DeployError):
    pass


class RejectedError(DeployError):
    pass


class CancelledError(DeployError):
    pass
