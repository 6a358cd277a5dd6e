import json
import logging
import os
from collections import namedtuple

from eth_utils import is_address, remove_0x_prefix

from migrator.errors import NotFoundError, UnresolvedLinkError

logger = logging.getLogger(__name__)

# Placeholders are always the width of an address in hex
PLACEHOLDER_LENGTH = 40

DeployedInstance = namedtuple('DeployedInstance', ('contract_name', 'address', 'abi'))


class ContractArtifact(object):
    """Compiled contract, as produced by the compiler. Read-only.
    """

    def __init__(self, name, abi, bytecode, link_references=None):
        """Create a new artifact.

        :param name: Name of the contract
        :param abi: JSON ABI of the contract
        :param bytecode: Hex encoded creation bytecode, possibly containing link placeholders
        :param link_references: Mapping of library name to a list of (start, length) byte ranges in the bytecode
        """
        self.name = name
        self.abi = tuple(abi)
        self.bytecode = remove_0x_prefix(bytecode or '')
        if link_references is None:
            link_references = scan_placeholders(self.bytecode)
        self.link_references = {k: tuple(tuple(r) for r in v) for k, v in link_references.items()}

    @classmethod
    def from_json(cls, j):
        """Create an artifact from compiler JSON output.

        Accepts both our own compiler output (solc standard JSON with a contractName key) and the flat layout with
        top-level abi and bytecode keys.

        :param j: Dictionary containing the artifact
        :return: New artifact, or None if this is not a contract artifact
        """
        name = j.get('contractName')
        if name is None:
            return None

        evm_bytecode = j.get('evm', {}).get('bytecode')
        if evm_bytecode is not None:
            bytecode = evm_bytecode.get('object', '')
            link_references = {}
            for source, libraries in evm_bytecode.get('linkReferences', {}).items():
                for library, ranges in libraries.items():
                    link_references.setdefault(library, []).extend((r['start'], r['length']) for r in ranges)
        else:
            bytecode = j.get('bytecode', '')
            link_references = None

        return cls(name, j.get('abi', []), bytecode, link_references)

    @property
    def libraries(self):
        """Names of the libraries this contract must be linked against.
        """
        return set(self.link_references)

    def __repr__(self):
        return '<ContractArtifact {0}, {1} bytes, libraries: {2}>'.format(self.name, len(self.bytecode) // 2,
                                                                           sorted(self.libraries))


def scan_placeholders(bytecode):
    """Find library placeholders in hex bytecode with no accompanying link references.

    Placeholders are of the form __Name___...__ padded to the width of an address, or __$hash$__ for newer compilers
    (in which case the hash is all we have to go on).

    :param bytecode: Hex encoded bytecode without 0x prefix
    :return: Mapping of library name to (start, length) byte ranges
    """
    ret = {}
    idx = bytecode.find('__')
    while idx != -1:
        placeholder = bytecode[idx:idx + PLACEHOLDER_LENGTH]
        name = placeholder.strip('_')
        ret.setdefault(name, []).append((idx // 2, PLACEHOLDER_LENGTH // 2))
        idx = bytecode.find('__', idx + PLACEHOLDER_LENGTH)

    return ret


def link_bytecode(artifact, links):
    """Substitute library addresses into an artifact's bytecode.

    Libraries may be keyed either by bare name or by source-qualified name (source.sol:Name).

    :param artifact: Artifact to link
    :param links: Mapping of library name to address
    :return: Linked, 0x prefixed bytecode
    """
    bytecode = artifact.bytecode
    unresolved = set()
    for library, ranges in artifact.link_references.items():
        address = links.get(library)
        if address is None:
            address = next((v for k, v in links.items() if k.split(':')[-1] == library), None)
        if address is None:
            unresolved.add(library)
            continue

        if not is_address(address):
            raise ValueError('Invalid address {0} for library {1}'.format(address, library))

        address = remove_0x_prefix(address).lower()
        for start, length in ranges:
            bytecode = bytecode[:start * 2] + address[:length * 2] + bytecode[(start + length) * 2:]

    if unresolved or '_' in bytecode:
        unresolved |= set(scan_placeholders(bytecode))
        raise UnresolvedLinkError(artifact.name, unresolved)

    return '0x' + bytecode


class ArtifactStore(object):
    """Resolves contract names to compiled artifacts.
    """

    def resolve(self, name):
        """Resolve a contract name to its artifact.

        :param name: Name of the contract
        :return: ContractArtifact for the contract
        :raises NotFoundError: If no such artifact is known
        """
        raise NotImplementedError()


class InMemoryArtifactStore(ArtifactStore):
    def __init__(self, artifacts=()):
        self.artifacts = {a.name: a for a in artifacts}

    def add(self, artifact):
        self.artifacts[artifact.name] = artifact

    def resolve(self, name):
        artifact = self.artifacts.get(name)
        if artifact is None:
            raise NotFoundError('Artifact {} not found, have you compiled?'.format(name))

        return artifact


class DirectoryArtifactStore(InMemoryArtifactStore):
    """Artifact store backed by a directory of compiled JSON artifacts.
    """

    def __init__(self, artifact_dir):
        """Create a new store, scanning the directory for artifacts.

        :param artifact_dir: Directory to scan
        """
        super().__init__()
        self.artifact_dir = artifact_dir
        self.__scan_artifacts(artifact_dir)

    def __scan_artifacts(self, artifact_dir):
        """Find all valid contract JSON artifacts in a directory.

        :param artifact_dir: Directory to scan
        :return: None
        """
        for filename in sorted(os.listdir(artifact_dir)):
            if os.path.splitext(filename)[-1] != '.json':
                continue

            with open(os.path.join(artifact_dir, filename), 'r') as f:
                j = json.load(f)

            artifact = ContractArtifact.from_json(j) if isinstance(j, dict) else None
            if artifact is None:
                logger.warning('%s is not a valid contract, skipping', filename)
                continue

            self.add(artifact)

        logger.info('Loaded %s artifacts from %s', len(self.artifacts), artifact_dir)
