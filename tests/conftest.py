import json
import os

import pytest
from eth_utils import to_checksum_address

from migrator.artifacts import ContractArtifact, InMemoryArtifactStore
from migrator.errors import CancelledError
from migrator.ledger import DeploymentLedger
from migrator.network import Confirmation, NetworkClient, PendingTransaction
from migrator.steps import MigrationStep

NETWORK_ID = 'testnet'
DEPLOYER = '0x' + 'de' * 20

# Deploys a contract whose runtime code is a single STOP, ignoring any constructor arguments
STOP_BYTECODE = '6001600c60003960016000f300'
CONSTRUCTOR_ABI = [{'type': 'constructor', 'stateMutability': 'nonpayable', 'inputs': [{'name': 'x', 'type': 'uint256'}]}]
ADDRESS_CONSTRUCTOR_ABI = [{'type': 'constructor', 'stateMutability': 'nonpayable',
                            'inputs': [{'name': 'a', 'type': 'address'}]}]

# Single legacy style library placeholder at byte 14
LIB_PLACEHOLDER = '__Lib' + '_' * 35
LINKED_BYTECODE = STOP_BYTECODE + '73' + LIB_PLACEHOLDER


class FakeNetwork(NetworkClient):
    """In-memory network client, deterministically assigning addresses in submission order"""

    def __init__(self):
        self.submissions = []
        self.confirm_timeouts = []
        self.failures = {}
        self.address = DEPLOYER
        self.connected = False

    def unlock_keyfile(self, keyfile, password):
        return True

    def connect(self, skip_checks=False):
        self.connected = True

    def fail_submission(self, n, error):
        """Make the n-th submission (0-based) fail to confirm with error"""
        self.failures[n] = error

    def submit(self, bytecode, constructor_args, sender, abi=None):
        n = len(self.submissions)
        self.submissions.append({'bytecode': bytecode, 'args': constructor_args, 'sender': sender, 'abi': abi})
        return PendingTransaction('0x{:064x}'.format(n + 1), sender)

    def await_confirmation(self, handle, timeout, cancel=None):
        self.confirm_timeouts.append(timeout)
        n = int(handle.tx_hash, 16) - 1
        if cancel is not None and cancel.is_set():
            raise CancelledError('Cancelled', handle.tx_hash)
        if n in self.failures:
            raise self.failures[n]

        return Confirmation(address_for(n), handle.tx_hash)


def address_for(n):
    """Address the fake network gives the n-th submission"""
    return to_checksum_address('0x{:040x}'.format(0xc0de0000 + n))


def make_artifact(name, abi=CONSTRUCTOR_ABI, bytecode=STOP_BYTECODE, link_references=None):
    return ContractArtifact(name, abi, bytecode, link_references)


def step(index, body, name=None):
    return MigrationStep(index, name or 'step{}'.format(index), body)


def deploy_step(index, contract_name, *args):
    def body(context):
        context.deploy(contract_name, list(args))

    return step(index, body, 'deploy_' + contract_name)


@pytest.fixture
def ledger_uri(tmp_path):
    return 'sqlite:///' + str(tmp_path / 'ledger.db')


@pytest.fixture
def ledger(ledger_uri):
    return DeploymentLedger.from_uri(ledger_uri)


@pytest.fixture
def network():
    return FakeNetwork()


@pytest.fixture
def artifacts():
    return InMemoryArtifactStore([
        make_artifact('A'),
        make_artifact('B', abi=ADDRESS_CONSTRUCTOR_ABI),
        make_artifact('C'),
        make_artifact('Lib', abi=[]),
        make_artifact('Linked', abi=[], bytecode=LINKED_BYTECODE),
    ])


@pytest.fixture
def artifactdir(tmp_path):
    """Directory of artifacts in compiler output format"""
    outdir = tmp_path / 'build'
    outdir.mkdir()
    for name in ('A', 'CoinracerMarketPlace'):
        with open(os.path.join(str(outdir), name + '.json'), 'w') as f:
            json.dump({
                'contractName': name,
                'abi': CONSTRUCTOR_ABI,
                'evm': {'bytecode': {'object': STOP_BYTECODE, 'linkReferences': {}}},
            }, f)

    return str(outdir)
