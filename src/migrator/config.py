import logging
import yaml

from migrator.errors import ConfigurationError
from migrator.ledger import DEFAULT_LEDGER_URI
from migrator.network import DEFAULT_POLL_INTERVAL, Web3Network

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 240


class NetworkConfig(object):
    """Configuration for an Ethereum network.
    """

    def __init__(self, name, eth_uri, chain_id, gas_limit, gas_price, timeout, poll_interval):
        """Create a new network configuration from parts.

        :param name: Name of the network, also used as its key in the ledger
        :param eth_uri: URI of HTTP RPC endpoint to access network from
        :param chain_id: Chain ID of the network
        :param gas_limit: Gas limit to send with each transaction
        :param gas_price: Gas price to send with each transaction, None to leave it to the node
        :param timeout: Time to wait for each deployment to be confirmed
        :param poll_interval: Time between polls for a transaction receipt
        """
        self.name = name
        self.eth_uri = eth_uri
        self.chain_id = chain_id
        self.gas_limit = gas_limit
        self.gas_price = gas_price
        self.timeout = timeout
        self.poll_interval = poll_interval

        self.validate()

    @classmethod
    def from_dict(cls, d, name):
        """Create a new network configuration from a dictionary.

        :param d: Dictionary containing network configuration
        :param name: Name of the network
        :return: New network configuration from provided dictionary
        """
        if d is None:
            d = {}
        if not isinstance(d, dict):
            raise ConfigurationError('Network {} must be a mapping'.format(name))

        eth_uri = d.get('eth_uri')
        chain_id = d.get('chain_id')
        gas_limit = d.get('gas_limit')
        gas_price = d.get('gas_price')
        timeout = d.get('timeout', DEFAULT_TIMEOUT)
        poll_interval = d.get('poll_interval', DEFAULT_POLL_INTERVAL)

        return cls(name, eth_uri, chain_id, gas_limit, gas_price, timeout, poll_interval)

    def validate(self):
        """Validate network parameters for sanity.

        :return: None
        """
        if not self.eth_uri or not self.eth_uri.startswith('http'):
            raise ConfigurationError('Non-http RPC endpoint specified as eth_uri for network {}'.format(self.name))
        if not isinstance(self.chain_id, int):
            raise ConfigurationError('Invalid chain_id for network {}'.format(self.name))
        if not isinstance(self.gas_limit, int) or self.gas_limit <= 0:
            raise ConfigurationError('Invalid gas_limit for network {}'.format(self.name))
        if self.gas_price is not None and (not isinstance(self.gas_price, int) or self.gas_price < 0):
            raise ConfigurationError('Invalid gas_price for network {}'.format(self.name))
        if self.timeout <= 0:
            raise ConfigurationError('Invalid timeout for network {}'.format(self.name))
        if self.poll_interval <= 0:
            raise ConfigurationError('Invalid poll_interval for network {}'.format(self.name))

    def create(self):
        """Create a Web3Network object based on this configuration

        :return: Web3Network object based on this configuration
        """
        return Web3Network(self.name, self.eth_uri, self.chain_id, self.gas_limit, self.gas_price, self.timeout,
                           self.poll_interval)


class Config(object):
    """Global configuration for migrating a project to a set of networks.
    """

    def __init__(self, network_configs, ledger_uri=DEFAULT_LEDGER_URI, artifactdir='build', migrations='migrations'):
        """Create a new Config from the provided network configurations.

        :param network_configs: Configurations for all networks known to this project
        :param ledger_uri: Database URI of the deployment ledger
        :param artifactdir: Directory containing compiled artifacts
        :param migrations: Directory containing migration files
        """
        self.network_configs = network_configs
        self.ledger_uri = ledger_uri
        self.artifactdir = artifactdir
        self.migrations = migrations

        self.validate()

    @classmethod
    def from_dict(cls, d):
        """Create a new Config from a dictionary

        :param d: Dictionary containing configuration
        :return: New configuration from provided dictionary
        """
        if not isinstance(d, dict):
            raise ConfigurationError('Configuration must be a mapping')

        networks = d.get('networks') or {}
        if not isinstance(networks, dict):
            raise ConfigurationError('Networks must be a mapping of name to network')

        network_configs = {k: NetworkConfig.from_dict(v, k) for k, v in networks.items()}

        return cls(network_configs,
                   ledger_uri=d.get('ledger_uri', DEFAULT_LEDGER_URI),
                   artifactdir=d.get('artifactdir', 'build'),
                   migrations=d.get('migrations', 'migrations'))

    @classmethod
    def from_yaml(cls, f):
        """Create a new Config from a YAML file

        :param f: File object containing YAML configuration
        :return: New configuration from provided YAML file
        """
        try:
            d = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError('Could not parse configuration: {}'.format(e)) from e

        return Config.from_dict(d)

    def validate(self):
        """Validate parameters for sanity

        :return: None
        """
        if not self.network_configs:
            raise ConfigurationError('No networks configured')
