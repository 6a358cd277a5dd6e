import json
import os

import pytest

from migrator.artifacts import ContractArtifact, DirectoryArtifactStore, link_bytecode, scan_placeholders
from migrator.errors import NotFoundError, UnresolvedLinkError

from conftest import CONSTRUCTOR_ABI, LINKED_BYTECODE, STOP_BYTECODE

LIB_ADDRESS = '0x' + '4c' * 20
HASH_PLACEHOLDER = '__$' + 'ab' * 17 + '$__'


def solc_artifact(name, bytecode, link_references=None):
    return {
        'contractName': name,
        'abi': CONSTRUCTOR_ABI,
        'evm': {'bytecode': {'object': bytecode, 'linkReferences': link_references or {}}},
    }


def test_from_solc_json():
    j = solc_artifact('Token', STOP_BYTECODE + HASH_PLACEHOLDER,
                      {'SafeMath.sol': {'SafeMath': [{'start': 13, 'length': 20}]}})
    artifact = ContractArtifact.from_json(j)

    assert artifact.name == 'Token'
    assert artifact.abi == tuple(CONSTRUCTOR_ABI)
    assert artifact.libraries == {'SafeMath'}
    assert artifact.link_references == {'SafeMath': ((13, 20),)}

    linked = link_bytecode(artifact, {'SafeMath': LIB_ADDRESS})
    assert linked == '0x' + STOP_BYTECODE + LIB_ADDRESS[2:]


def test_from_flat_json():
    artifact = ContractArtifact.from_json({'contractName': 'Linked', 'abi': [], 'bytecode': '0x' + LINKED_BYTECODE})

    assert artifact.bytecode == LINKED_BYTECODE
    assert artifact.link_references == {'Lib': ((14, 20),)}


def test_from_json_not_a_contract():
    assert ContractArtifact.from_json({'abi': []}) is None


def test_scan_placeholders():
    assert scan_placeholders(STOP_BYTECODE) == {}
    assert scan_placeholders(HASH_PLACEHOLDER + '00' + HASH_PLACEHOLDER) == {
        '$' + 'ab' * 17 + '$': [(0, 20), (21, 20)],
    }


def test_link_by_qualified_name():
    j = solc_artifact('Token', HASH_PLACEHOLDER, {'lib/SafeMath.sol': {'SafeMath': [{'start': 0, 'length': 20}]}})
    artifact = ContractArtifact.from_json(j)

    assert link_bytecode(artifact, {'lib/SafeMath.sol:SafeMath': LIB_ADDRESS}) == LIB_ADDRESS.lower()


def test_link_missing_library():
    artifact = ContractArtifact('Linked', [], LINKED_BYTECODE)

    with pytest.raises(UnresolvedLinkError) as e:
        link_bytecode(artifact, {'Other': LIB_ADDRESS})

    assert e.value.contract_name == 'Linked'
    assert e.value.libraries == {'Lib'}


def test_link_placeholder_without_references():
    # References say nothing about this placeholder, it must still be caught
    artifact = ContractArtifact('Token', [], HASH_PLACEHOLDER, link_references={})

    with pytest.raises(UnresolvedLinkError):
        link_bytecode(artifact, {})


def test_link_invalid_address():
    artifact = ContractArtifact('Linked', [], LINKED_BYTECODE)

    with pytest.raises(ValueError):
        link_bytecode(artifact, {'Lib': '0x1234'})


def test_link_nothing_to_link():
    artifact = ContractArtifact('A', [], '0x' + STOP_BYTECODE)
    assert link_bytecode(artifact, {'Lib': LIB_ADDRESS}) == '0x' + STOP_BYTECODE


def test_directory_store(artifactdir):
    with open(os.path.join(artifactdir, 'notes.json'), 'w') as f:
        json.dump({'hello': 'world'}, f)
    with open(os.path.join(artifactdir, 'README'), 'w') as f:
        f.write('not json')

    store = DirectoryArtifactStore(artifactdir)
    assert set(store.artifacts) == {'A', 'CoinracerMarketPlace'}
    assert store.resolve('A').bytecode == STOP_BYTECODE

    with pytest.raises(NotFoundError):
        store.resolve('notes')
