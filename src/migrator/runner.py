import logging
from collections import namedtuple

from migrator.context import StepContext
from migrator.errors import ConfigurationError, LedgerError
from migrator.ledger import DeployedContract, DeploymentRecord, STEP_ORIGIN
from migrator.steps import validate_steps

logger = logging.getLogger(__name__)

RunResult = namedtuple('RunResult', ('completed', 'failure'))
Failure = namedtuple('Failure', ('index', 'message', 'error'))


def describe_error(e):
    """Short human-readable description of an exception.

    :param e: Exception to describe
    :return: Description including the exception type
    """
    message = str(e)
    return '{0}: {1}'.format(type(e).__name__, message) if message else type(e).__name__


class MigrationRunner(object):
    """Runs ordered migration steps against a network, exactly once each.

    Steps already recorded in the ledger for the network are skipped. The first failing step stops the run; the ledger
    is left holding exactly the steps before it. Nothing is ever retried automatically.
    """

    def __init__(self, ledger, network, artifacts, deployer_account, deploy_timeout=None, cancel=None):
        """Create a new runner.

        :param ledger: DeploymentLedger recording completed steps
        :param network: NetworkClient to deploy with
        :param artifacts: ArtifactStore to resolve contracts with
        :param deployer_account: Account all deployments are sent from
        :param deploy_timeout: Default time to wait for each deployment, None for the network's default
        :param cancel: Optional threading.Event, when set the run stops at the next opportunity
        """
        self.ledger = ledger
        self.network = network
        self.artifacts = artifacts
        self.deployer_account = deployer_account
        self.deploy_timeout = deploy_timeout
        self.cancel = cancel

    def __pending(self, steps, network_id):
        last = self.ledger.last_completed_index(network_id)
        if last is not None and last > steps[-1].index:
            raise ConfigurationError('Ledger for network {0} has step {1} complete but only steps up to {2} are '
                                     'defined'.format(network_id, last, steps[-1].index))

        start = STEP_ORIGIN if last is None else last + 1
        return [s for s in steps if s.index >= start]

    def plan(self, steps, network_id):
        """Steps a run would execute, without executing anything.

        :param steps: Sequence of MigrationSteps
        :param network_id: Network to plan against
        :return: List of pending MigrationSteps, in order
        """
        return self.__pending(validate_steps(steps), network_id)

    def run(self, steps, network_id):
        """Run every step not yet completed on a network, in order.

        :param steps: Sequence of MigrationSteps
        :param network_id: Network to run against
        :return: RunResult with the steps completed this run and the failure, if any
        :raises ConfigurationError: If the step sequence is malformed, before anything is run
        :raises LedgerError: If the ledger refused a record, which means another writer is active
        """
        steps = validate_steps(steps)

        completed = []
        with self.ledger.lock(network_id):
            pending = self.__pending(steps, network_id)
            if not pending:
                logger.info('Network %s is up to date, nothing to run', network_id)

            for step in pending:
                if self.cancel is not None and self.cancel.is_set():
                    logger.warning('Run cancelled before step %s', step.index)
                    return RunResult(completed, Failure(step.index, 'Cancelled', None))

                logger.info('Running step %s: %s', step.index, step.name)
                context = StepContext(network_id, self.deployer_account, self.ledger, self.network, self.artifacts,
                                      timeout=self.deploy_timeout, cancel=self.cancel)
                try:
                    step.run(context)
                except Exception as e:
                    logger.exception('Step %s (%s) failed, stopping', step.index, step.name)
                    return RunResult(completed, Failure(step.index, describe_error(e), e))

                record = self.__build_record(network_id, step, context)
                try:
                    self.ledger.record(network_id, step.index, record)
                except LedgerError:
                    logger.exception('Could not record step %s for network %s', step.index, network_id)
                    raise

                logger.info('Completed step %s: %s at %s', step.index, record.contract_name, record.address)
                completed.append(step.index)

        return RunResult(completed, None)

    def __build_record(self, network_id, step, context):
        contracts = [DeployedContract(i, instance.contract_name, instance.address, tx_hash, instance.abi)
                     for i, (instance, tx_hash) in enumerate(context.transactions)]

        record = DeploymentRecord(network_id, step.index, step_name=step.name, contracts=contracts)
        if contracts:
            record.contract_name = contracts[-1].contract_name
            record.address = contracts[-1].address
            record.transaction_hash = contracts[-1].transaction_hash

        return record
