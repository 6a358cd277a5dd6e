import json
import logging
import os

import solcx

DEFAULT_SOLC_VERSION = '0.8.19'

logger = logging.getLogger(__name__)


def __compiler_input_from_directory(src_dir, ext_dirs=(), optimizer_runs=200):
    """Generate input JSON for solc given directories of contracts to compile.

    :param src_dir: Directory containing contract Solidity source
    :param ext_dirs: Directories containing external dependencies
    :param optimizer_runs: Number of runs to put the contract through the optimizer
    :return: Dictionary containing solc input
    """
    sources = {}
    for root, dirs, files in os.walk(src_dir):
        for file in files:
            if os.path.splitext(file)[-1] != '.sol':
                continue

            path = os.path.join(root, file)
            # Source unit names are relative to the source directory, always with forward slashes
            source_name = os.path.relpath(path, src_dir).replace(os.sep, '/')
            with open(path, 'r') as f:
                sources[source_name] = f.read()

    logger.info('Compiling %s', ', '.join(sources.keys()))

    remappings = []
    for ext_dir in ext_dirs:
        for ext in os.listdir(ext_dir):
            remappings.append(ext + '=' + os.path.join(ext_dir, ext))

    ret = {
        'language': 'Solidity',
        'sources': {k: {'content': v} for k, v in sources.items()},
        'settings': {
            'optimizer': {
                'enabled': True,
                'runs': optimizer_runs,
            },
            'outputSelection': {
                '*': {
                    '*': [
                        'abi',
                        'evm.bytecode.object',
                        'evm.bytecode.linkReferences',
                    ]
                }
            }
        }
    }

    if remappings:
        ret['settings']['remappings'] = remappings

    return ret


def __write_compiler_output(output, source_files, out_dir):
    """Write output JSON from solc to a directory, one file per contract.

    :param output: Output from solc
    :param source_files: Source files compiled to generate provided output
    :param out_dir: Directory to write output JSON to
    :return: True if contracts have changed, else False
    """
    is_dirty = False

    if not os.path.isdir(out_dir):
        os.makedirs(out_dir, exist_ok=True)

    contracts = output.get('contracts', {})
    for source_file in source_files:
        for name, contract in contracts.get(source_file, {}).items():
            out_file = os.path.join(out_dir, name + '.json')
            contract['contractName'] = name
            contract['sourceName'] = source_file

            # Attempt to match bytecode so unchanged contracts are reported as such
            if not os.path.exists(out_file):
                is_dirty = True
            else:
                with open(out_file, 'r') as f:
                    if json.load(f) != contract:
                        is_dirty = True

            logger.info('Writing %s', out_file)
            with open(out_file, 'w') as f:
                json.dump(contract, f, indent=2, sort_keys=True)

    return is_dirty


def configure_compiler(solc_version):
    """Set up a specific solc version, installing it if needed.

    :param solc_version: Version of solc to configure
    :return: Path to the solc executable
    """
    solc_version = solc_version.lstrip('v')
    installed = {str(v) for v in solcx.get_installed_solc_versions()}
    if solc_version not in installed:
        logger.info('Installing solc %s', solc_version)
        solcx.install_solc(solc_version)

    solcx.set_solc_version(solc_version)
    return str(solcx.get_executable(solc_version))


def compile_directory(solc_version, src_dir, out_dir, ext_dirs=(), optimizer_runs=200):
    """Compile a directory of contracts into artifact JSON.

    :param solc_version: Version of solc to use
    :param src_dir: Directory containing contract Solidity source
    :param out_dir: Directory to output compiled JSON into
    :param ext_dirs: Directories containing external dependencies
    :param optimizer_runs: Number of runs to put the contract through the optimizer
    :return: True if contracts have changed, else False
    """
    solc_version = solc_version.lstrip('v')
    configure_compiler(solc_version)

    kwargs = {}
    if ext_dirs:
        kwargs['allow_paths'] = [os.path.abspath(d) for d in ext_dirs]

    input = __compiler_input_from_directory(src_dir, ext_dirs=ext_dirs, optimizer_runs=optimizer_runs)
    source_files = input['sources'].keys()
    output = solcx.compile_standard(input, solc_version=solc_version, **kwargs)
    # TODO: Compilation errors surface as SolcError with the raw compiler output, report them in a friendlier manner

    return __write_compiler_output(output, source_files, out_dir)
