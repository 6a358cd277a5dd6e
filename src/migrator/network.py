import logging
import string
import time
from collections import namedtuple

from eth_account import Account
from eth_utils import is_checksum_address, to_checksum_address, to_hex
from hexbytes import HexBytes
from web3 import Web3, HTTPProvider
from web3.exceptions import TransactionNotFound, Web3Exception
from web3.middleware import ExtraDataToPOAMiddleware

from migrator.errors import CancelledError, ConfirmationTimeoutError, DeployError, RejectedError

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 1

PendingTransaction = namedtuple('PendingTransaction', ('tx_hash', 'sender'))
Confirmation = namedtuple('Confirmation', ('address', 'tx_hash'))


class NetworkClient(object):
    """Interface for submitting deployments to a network and waiting on them.
    """

    def submit(self, bytecode, constructor_args, sender, abi=None):
        """Submit a contract creation transaction.

        :param bytecode: Fully linked, hex encoded creation bytecode
        :param constructor_args: Arguments to the contract's constructor
        :param sender: Account sending the transaction
        :param abi: ABI used to encode the constructor arguments
        :return: PendingTransaction handle
        :raises RejectedError: If the node refused the transaction
        """
        raise NotImplementedError()

    def await_confirmation(self, handle, timeout, cancel=None):
        """Block until a submitted transaction is confirmed.

        :param handle: PendingTransaction returned from submit
        :param timeout: Max time to wait in seconds
        :param cancel: Optional threading.Event, when set the wait is abandoned
        :return: Confirmation with the created contract's address
        :raises ConfirmationTimeoutError: If no receipt was seen before the timeout
        :raises RejectedError: If the transaction was mined but failed
        :raises CancelledError: If the wait was cancelled
        """
        raise NotImplementedError()


class Web3Network(NetworkClient):
    """Class for interacting with an Ethereum network over JSON-RPC.
    """

    def __init__(self, name, eth_uri, chain_id, gas_limit, gas_price, timeout, poll_interval=DEFAULT_POLL_INTERVAL):
        """Create a new network.

        :param name: Name of the network, also the key of this network in the ledger
        :param eth_uri: URI of HTTP RPC endpoint to access network from
        :param chain_id: Chain ID of the network
        :param gas_limit: Gas limit to send with each transaction
        :param gas_price: Gas price to send with each transaction, None to leave it to the node
        :param timeout: Default time to wait for a transaction to be confirmed
        :param poll_interval: Time between receipt polls
        """
        self.name = name
        self.eth_uri = eth_uri
        self.chain_id = chain_id
        self.gas_limit = gas_limit
        self.gas_price = gas_price
        self.timeout = timeout
        self.poll_interval = poll_interval

        self.nonce = None
        self.w3 = None
        self.address = None
        self.priv_key = None

    @classmethod
    def from_web3(cls, name, w3, priv_key, gas_limit, gas_price, timeout, poll_interval=DEFAULT_POLL_INTERVAL):
        """Construct a network based on an already-configured Web3 instance.

        :param name: Name of the network
        :param w3: Web3 instance for interacting with this network
        :param priv_key: Private key used to interact with this network
        :param gas_limit: Gas limit to send with each transaction
        :param gas_price: Gas price to send with each transaction
        :param timeout: Default time to wait for a transaction to be confirmed
        :param poll_interval: Time between receipt polls
        :return: New network based on provided Web3 instance
        """
        ret = cls(name, None, w3.eth.chain_id, gas_limit, gas_price, timeout, poll_interval)
        ret.w3 = w3
        ret.priv_key = priv_key
        ret.address = Account.from_key(priv_key).address
        return ret

    def connect(self, skip_checks=False):
        """Connect to the network.

        :param skip_checks: Skip sanity checks to ensure network is reachable and healthy
        :return: None
        """
        self.w3 = Web3(HTTPProvider(self.eth_uri))
        self.w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)

        logger.info('Connected to ethereum client at %s, chain id: %s', self.eth_uri, self.w3.eth.chain_id)

        if not skip_checks:
            self.__preflight_checks()

    def unlock_keyfile(self, keyfile, password):
        """Unlock a JSON keyfile for signing transactions to this network.

        :param keyfile: Keyfile to unlock
        :param password: Password to decrypt keyfile
        :return: True if success, else False
        """
        try:
            self.priv_key = Account.decrypt(keyfile.read(), password)
            self.address = Account.from_key(self.priv_key).address
        except ValueError:
            logger.exception('Incorrect password for keyfile')
            return False

        return True

    def __preflight_checks(self):
        """Perform some sanity checks and retrieve account's current nonce after connecting to a network.

        :return: None
        """
        logger.info('Using address: %s', self.address)

        if self.chain_id != self.w3.eth.chain_id:
            raise DeployError('Connected to network with incorrect chain id')

        self.nonce = self.__get_nonce()

    def __get_nonce(self):
        """Retrieve account's current nonce.

        :return: Current nonce for account
        """
        if self.address is None:
            logger.warning('No account set, cannot fetch nonce')
            return

        last_nonce = -1
        while True:
            # Also include transactions in txpool
            nonce = self.w3.eth.get_transaction_count(self.address, 'pending')

            if nonce == last_nonce:
                logger.info('Settled on transaction count %s', nonce)
                break

            last_nonce = nonce
            time.sleep(self.poll_interval)

        return nonce

    def normalize_address(self, addr):
        """Normalize an Ethereum address into a canonical form

        :param addr: Address to normalize
        :return: Normalized address
        """
        if addr is None:
            return None

        if addr.startswith('0x'):
            addr = addr[2:]

        lowhexdigits = set(string.hexdigits.lower())
        if all([c in lowhexdigits for c in addr]):
            addr = to_checksum_address(addr)[2:]

        addr = '0x' + addr
        if not is_checksum_address(addr):
            raise ValueError('Address is mixed case, but checksum is invalid')

        return addr

    def txopts(self, increment_nonce=True):
        """Default transaction options for this network.

        :param increment_nonce: Should we increment our nonce after fetching our options
        :return: Default transaction options for this network
        """
        if self.nonce is None:
            self.nonce = self.w3.eth.get_transaction_count(self.address, 'pending')

        logger.info('Preparing tx with nonce %s', self.nonce)
        ret = {
            'chainId': self.chain_id,
            'from': self.address,
            'gas': self.gas_limit,
            'nonce': self.nonce,
        }

        # Passed through as configured, otherwise the node fills in its own fee fields
        if self.gas_price is not None:
            ret['gasPrice'] = self.gas_price

        # Steps run sequentially so we don't need to lock
        if increment_nonce:
            self.nonce += 1

        return ret

    def sign_transaction(self, tx):
        """Sign a provided transaction with our private key.

        :param tx: Transaction to sign
        :return: Signed transaction
        """
        logger.debug('Signing transaction: %s', tx)
        return self.w3.eth.account.sign_transaction(tx, self.priv_key).raw_transaction

    def send_transaction(self, signed_tx):
        """Transmit a signed transaction to the network.

        :param signed_tx: Transaction to send
        :return: Transaction hash of the transmitted transaction
        """
        try:
            txhash = self.w3.eth.send_raw_transaction(signed_tx)
        except (ValueError, Web3Exception) as e:
            if str(e).find('known transaction') != -1:
                txhash = Web3.keccak(signed_tx)
                logger.warning('Got known transaction error for tx %s', to_hex(txhash))
            else:
                raise e

        logger.info('Submitting tx %s', to_hex(txhash))
        return txhash

    def submit(self, bytecode, constructor_args, sender, abi=None):
        if sender is not None and self.normalize_address(sender) != self.normalize_address(self.address):
            raise DeployError('No key unlocked for sender {0}'.format(sender))

        contract = self.w3.eth.contract(abi=list(abi or []), bytecode=bytecode)
        try:
            tx = contract.constructor(*constructor_args).build_transaction(self.txopts())
            txhash = self.send_transaction(self.sign_transaction(tx))
        except (ValueError, Web3Exception) as e:
            # Nothing was broadcast, refetch the nonce next time
            self.nonce = None
            raise RejectedError('Deployment transaction rejected: {0}'.format(e)) from e

        return PendingTransaction(to_hex(txhash), self.address)

    def await_confirmation(self, handle, timeout=None, cancel=None):
        if timeout is None:
            timeout = self.timeout

        txhash = HexBytes(handle.tx_hash)
        deadline = time.monotonic() + timeout
        while True:
            if cancel is not None and cancel.is_set():
                raise CancelledError('Cancelled waiting for tx {0}'.format(handle.tx_hash), handle.tx_hash)

            try:
                receipt = self.w3.eth.get_transaction_receipt(txhash)
            except TransactionNotFound:
                receipt = None

            if receipt is not None:
                break

            if time.monotonic() >= deadline:
                raise ConfirmationTimeoutError('Timed out after {0}s waiting for tx {1}'.format(timeout, handle.tx_hash),
                                               handle.tx_hash)

            if cancel is not None:
                cancel.wait(self.poll_interval)
            else:
                time.sleep(self.poll_interval)

        logger.info('Receipt for %s: %s', handle.tx_hash, dict(receipt))
        if receipt['status'] != 1:
            raise RejectedError('Transaction {0} failed, check network state'.format(handle.tx_hash), handle.tx_hash)

        address = receipt.get('contractAddress')
        if address is None:
            raise RejectedError('Transaction {0} did not create a contract'.format(handle.tx_hash), handle.tx_hash)

        return Confirmation(to_checksum_address(address), handle.tx_hash)
