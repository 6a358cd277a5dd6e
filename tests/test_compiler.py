import json
import os

import pytest
import solcx

from migrator import compiler
from migrator.artifacts import DirectoryArtifactStore

from conftest import CONSTRUCTOR_ABI, LINKED_BYTECODE, STOP_BYTECODE

SOURCE = '''
pragma solidity ^0.8.0;
library Lib { function f() external {} }
contract Linked { constructor(uint256 x) { Lib.f(); } }
'''


def solc_output():
    return {
        'contracts': {
            'Linked.sol': {
                'Lib': {
                    'abi': [],
                    'evm': {'bytecode': {'object': STOP_BYTECODE, 'linkReferences': {}}},
                },
                'Linked': {
                    'abi': CONSTRUCTOR_ABI,
                    'evm': {'bytecode': {'object': LINKED_BYTECODE,
                                         'linkReferences': {'Linked.sol': {'Lib': [{'start': 14, 'length': 20}]}}}},
                },
            },
        },
    }


@pytest.fixture
def fake_solc(monkeypatch):
    calls = []

    def compile_standard(input, **kwargs):
        calls.append((input, kwargs))
        return solc_output()

    monkeypatch.setattr(solcx, 'get_installed_solc_versions', lambda: ['0.8.19'])
    monkeypatch.setattr(solcx, 'install_solc', lambda version: pytest.fail('should not install'))
    monkeypatch.setattr(solcx, 'set_solc_version', lambda version: None)
    monkeypatch.setattr(solcx, 'get_executable', lambda version: '/opt/solc-' + version)
    monkeypatch.setattr(solcx, 'compile_standard', compile_standard)
    return calls


def test_configure_compiler_installs_missing(monkeypatch):
    installed = []
    monkeypatch.setattr(solcx, 'get_installed_solc_versions', lambda: [])
    monkeypatch.setattr(solcx, 'install_solc', installed.append)
    monkeypatch.setattr(solcx, 'set_solc_version', lambda version: None)
    monkeypatch.setattr(solcx, 'get_executable', lambda version: '/opt/solc-' + version)

    assert compiler.configure_compiler('v0.8.19') == '/opt/solc-0.8.19'
    assert installed == ['0.8.19']


def test_compile_directory(tmp_path, fake_solc):
    srcdir = tmp_path / 'contracts'
    srcdir.mkdir()
    (srcdir / 'Linked.sol').write_text(SOURCE)
    (srcdir / 'README.md').write_text('not solidity')
    outdir = str(tmp_path / 'build')

    assert compiler.compile_directory('0.8.19', str(srcdir), outdir)

    input, kwargs = fake_solc[0]
    assert set(input['sources']) == {'Linked.sol'}
    assert 'evm.bytecode.linkReferences' in input['settings']['outputSelection']['*']['*']
    assert kwargs == {'solc_version': '0.8.19'}

    assert sorted(os.listdir(outdir)) == ['Lib.json', 'Linked.json']
    with open(os.path.join(outdir, 'Linked.json')) as f:
        assert json.load(f)['sourceName'] == 'Linked.sol'

    store = DirectoryArtifactStore(outdir)
    assert store.resolve('Linked').link_references == {'Lib': ((14, 20),)}
    assert store.resolve('Lib').libraries == set()

    # Unchanged output is not dirty
    assert not compiler.compile_directory('0.8.19', str(srcdir), outdir)


def test_compile_directory_with_external(tmp_path, fake_solc):
    srcdir = tmp_path / 'contracts'
    srcdir.mkdir()
    (srcdir / 'Linked.sol').write_text(SOURCE)
    extdir = tmp_path / 'external'
    (extdir / 'openzeppelin').mkdir(parents=True)

    compiler.compile_directory('0.8.19', str(srcdir), str(tmp_path / 'build'), [str(extdir)])

    input, kwargs = fake_solc[0]
    assert input['settings']['remappings'] == ['openzeppelin=' + os.path.join(str(extdir), 'openzeppelin')]
    assert kwargs['allow_paths'] == [os.path.abspath(str(extdir))]


def test_sources_keyed_by_relative_path(tmp_path, fake_solc):
    srcdir = tmp_path / 'contracts'
    for sub in ('token', 'market'):
        (srcdir / sub).mkdir(parents=True)
        (srcdir / sub / 'Token.sol').write_text(SOURCE.replace('Linked', sub.capitalize()))

    compiler.compile_directory('0.8.19', str(srcdir), str(tmp_path / 'build'))

    input, _ = fake_solc[0]
    assert set(input['sources']) == {'token/Token.sol', 'market/Token.sol'}
    assert 'Market' in input['sources']['market/Token.sol']['content']
