import logging

from migrator.artifacts import DeployedInstance, link_bytecode
from migrator.errors import DeployError, NotFoundError

logger = logging.getLogger(__name__)


class StepContext(object):
    """Everything a migration step body is allowed to touch.

    A context is bound to a single step on a single network. Deployments made through it are collected so the runner
    can record them once the step body returns.
    """

    def __init__(self, network_id, deployer_account, ledger, network, artifacts, timeout=None, cancel=None):
        """Create a new context.

        :param network_id: Network the step runs against
        :param deployer_account: Account deployments are sent from
        :param ledger: DeploymentLedger to look up earlier deployments in
        :param network: NetworkClient to submit deployments with
        :param artifacts: ArtifactStore to resolve contract names with
        :param timeout: Default time to wait for each deployment to be confirmed, None for the network's default
        :param cancel: Optional threading.Event to abandon waits for confirmation
        """
        self.__network_id = network_id
        self.__deployer_account = deployer_account
        self.__ledger = ledger
        self.__network = network
        self.__artifacts = artifacts
        self.__timeout = timeout
        self.__cancel = cancel

        self.__links = {}
        # (instance, tx_hash) pairs, in deployment order
        self.transactions = []

    @property
    def network_id(self):
        return self.__network_id

    @property
    def deployer_account(self):
        return self.__deployer_account

    def resolve(self, name):
        """Resolve a contract name to its compiled artifact.

        :param name: Name of the contract
        :return: ContractArtifact
        """
        return self.__artifacts.resolve(name)

    def link(self, library_name, address):
        """Use a library address for every later deployment in this step.

        :param library_name: Name of the library
        :param address: Address of the library, or a DeployedInstance of it
        :return: None
        """
        if isinstance(address, DeployedInstance):
            address = address.address

        self.__links[library_name] = address

    def deploy(self, artifact, constructor_args=(), link_overrides=None, timeout=None):
        """Deploy a contract and wait for it to be confirmed (blocking).

        :param artifact: ContractArtifact to deploy, or the name of one
        :param constructor_args: Arguments to the contract's constructor
        :param link_overrides: Mapping of library name to address or DeployedInstance, takes precedence over link()
        :param timeout: Time to wait for confirmation, overriding the context's default
        :return: DeployedInstance of the new contract
        :raises UnresolvedLinkError: If a library placeholder has no address, nothing is submitted in this case
        :raises DeployError: If the network rejected the deployment or it was not confirmed in time
        """
        if isinstance(artifact, str):
            artifact = self.resolve(artifact)

        links = dict(self.__links)
        for library_name, address in (link_overrides or {}).items():
            if isinstance(address, DeployedInstance):
                address = address.address
            links[library_name] = address
        bytecode = link_bytecode(artifact, links)

        if timeout is None:
            timeout = self.__timeout

        logger.info('Deploying %s', artifact.name)
        try:
            handle = self.__network.submit(bytecode, list(constructor_args), self.__deployer_account, abi=artifact.abi)
        except DeployError:
            raise
        except Exception as e:
            raise DeployError('Could not submit {0}: {1}'.format(artifact.name, e)) from e

        try:
            confirmation = self.__network.await_confirmation(handle, timeout, cancel=self.__cancel)
        except Exception as e:
            logger.warning('Deployment of %s in tx %s was not confirmed, it may still land on chain. Inspect the '
                           'network before re-running', artifact.name, handle.tx_hash)
            if not isinstance(e, DeployError):
                raise DeployError('Could not confirm {0}: {1}'.format(artifact.name, e), handle.tx_hash) from e

            if e.tx_hash is None:
                e.tx_hash = handle.tx_hash
            raise

        instance = DeployedInstance(artifact.name, confirmation.address, artifact.abi)
        logger.info('Deployed %s to %s', artifact.name, instance.address)

        self.transactions.append((instance, confirmation.tx_hash))
        return instance

    @property
    def deployments(self):
        """Instances deployed by this step so far, in order.
        """
        return [instance for instance, _ in self.transactions]

    def get_deployed(self, contract_name):
        """Find a deployed instance of a contract, from this step or an earlier one on the same network.

        :param contract_name: Name of the contract
        :return: DeployedInstance of the contract
        :raises NotFoundError: If the contract has not been deployed on this network
        """
        for instance in reversed(self.deployments):
            if instance.contract_name == contract_name:
                return instance

        return self.__ledger.lookup(self.__network_id, contract_name)

    def is_deployed(self, contract_name):
        try:
            self.get_deployed(contract_name)
        except NotFoundError:
            return False

        return True
