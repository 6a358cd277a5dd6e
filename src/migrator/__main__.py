import click
import json
import logging
import sys

from migrator.artifacts import DirectoryArtifactStore
from migrator.compiler import configure_compiler, compile_directory, DEFAULT_SOLC_VERSION
from migrator.config import Config
from migrator.errors import ConfigurationError, LedgerError
from migrator.ledger import DeploymentLedger
from migrator.runner import MigrationRunner
from migrator.steps import load_steps
from migrator.util import results_from_instances

import colorama
import requests
from colorama import Fore, Style
from tabulate import tabulate

colorama.just_fix_windows_console()


def fail(message, rc=1):
    click.echo(Fore.RED + message + Style.RESET_ALL, err=True)
    sys.exit(rc)


def load_config(config, network):
    try:
        config = Config.from_yaml(config)
    except ConfigurationError as e:
        fail('Invalid configuration: {}'.format(e))

    if network not in config.network_configs:
        fail('No such network {0} defined, check configuration'.format(network))

    return config, config.network_configs[network]


def confirm_reset(ledger, network, yes):
    if not yes:
        click.confirm('Erase all ledger records for network {}? Contracts already on chain are NOT removed'
                      .format(network), abort=True)

    erased = ledger.reset(network)
    click.echo('Erased {0} records for network {1}'.format(erased, network))


@click.group()
@click.pass_context
def cli(ctx):
    logging.basicConfig(level=logging.INFO)
    ctx.ensure_object(dict)


@cli.command()
@click.option('--solc-version', default=DEFAULT_SOLC_VERSION,
              help='Version of solc to compile with')
@click.pass_context
def install_solc(ctx, solc_version):
    solc_path = configure_compiler(solc_version)
    click.echo('solc version {} installed to {}'.format(solc_version, solc_path))


@cli.command()
@click.option('--solc-version', default=DEFAULT_SOLC_VERSION,
              help='Version of solc to compile with')
@click.option('-i', '--srcdir', type=click.Path(exists=True, file_okay=False), default='contracts',
              help='Directory containing the solidity source to compile')
@click.option('-o', '--outdir', type=click.Path(file_okay=False), default='build',
              help='Directory to store the compiled json output for later deployment')
@click.option('-e', '--external', type=click.Path(exists=True, file_okay=False), multiple=True,
              help='Directory containing any external libraries used')
@click.pass_context
def compile(ctx, solc_version, srcdir, outdir, external):
    is_dirty = compile_directory(solc_version, srcdir, outdir, external)

    if not is_dirty:
        click.echo('No contract differences detected')


@cli.command()
@click.option('--config', envvar='CONFIG', type=click.File('r'), required=True,
              help='Path to yaml config file defining networks')
@click.option('--network', required=True,
              help='What network to migrate')
@click.option('--keyfile', envvar='KEYFILE', type=click.File('r'),
              help='Path to private key json file used to deploy')
@click.option('--password', envvar='PASSWORD',
              help='Password used to decrypt private key')
@click.option('--ledger-uri', envvar='LEDGER_URI',
              help='URI for the deployment ledger database, overrides configuration')
@click.option('-a', '--artifactdir', type=click.Path(exists=True, file_okay=False),
              help='Directory containing the compiled artifacts to deploy, overrides configuration')
@click.option('-m', '--migrations', type=click.Path(exists=True, file_okay=False),
              help='Directory containing migration files, overrides configuration')
@click.option('--reset', is_flag=True,
              help='Erase the ledger for this network and run every migration again')
@click.option('-y', '--yes', is_flag=True,
              help='Do not ask for confirmation before a reset')
@click.option('--dry-run', is_flag=True,
              help='Only print the migrations that would run')
@click.option('-o', '--output', type=click.Path(dir_okay=False, writable=True), required=False,
              help='File to output deployed addresses json to')
@click.pass_context
def migrate(ctx, config, network, keyfile, password, ledger_uri, artifactdir, migrations, reset, yes, dry_run,
            output):
    config, network_config = load_config(config, network)

    try:
        steps = load_steps(migrations or config.migrations)
    except ConfigurationError as e:
        fail('Invalid migrations: {}'.format(e))

    ledger = DeploymentLedger.from_uri(ledger_uri or config.ledger_uri)

    if dry_run:
        if reset:
            pending = steps
        else:
            try:
                pending = MigrationRunner(ledger, None, None, None).plan(steps, network)
            except ConfigurationError as e:
                fail('Invalid migrations: {}'.format(e))

        if not pending:
            click.echo('Network {} is up to date'.format(network))
        for step in pending:
            click.echo('Would run {0}_{1}'.format(step.index, step.name))
        return

    if keyfile is None:
        fail('A keyfile is required to migrate')
    if password is None:
        password = click.prompt('Password', hide_input=True)

    client = network_config.create()
    if not client.unlock_keyfile(keyfile, password):
        fail('Could not unlock keyfile')

    try:
        client.connect()
    except requests.exceptions.RequestException:
        fail('Could not connect to Ethereum client, exiting')

    if reset:
        confirm_reset(ledger, network, yes)

    artifacts = DirectoryArtifactStore(artifactdir or config.artifactdir)
    runner = MigrationRunner(ledger, client, artifacts, client.address)

    try:
        result = runner.run(steps, network)
    except (ConfigurationError, LedgerError) as e:
        fail('Migration aborted: {}'.format(e))

    if output:
        with open(output, 'w') as f:
            json.dump(results_from_instances(ledger.instances(network), network), f, indent=2, sort_keys=True)

    if result.failure is not None:
        fail('Migration failed at step {0}: {1}'.format(result.failure.index, result.failure.message))

    click.echo('Migrated {0}, ran {1} steps'.format(network, len(result.completed)))


@cli.command()
@click.option('--ledger-uri', envvar='LEDGER_URI', required=True,
              help='URI for the deployment ledger database')
@click.option('--network', required=True,
              help='What network to show')
@click.pass_context
def status(ctx, ledger_uri, network):
    ledger = DeploymentLedger.from_uri(ledger_uri)
    records = ledger.records(network)
    if not records:
        click.echo('No migrations recorded for network {}'.format(network))
        return

    rows = [(r.step_index, r.step_name, r.contract_name, r.address, r.transaction_hash, r.completed_at)
            for r in records]
    click.echo(tabulate(rows, headers=('Step', 'Name', 'Contract', 'Address', 'Tx', 'Completed')))


@cli.command()
@click.option('--ledger-uri', envvar='LEDGER_URI', required=True,
              help='URI for the deployment ledger database')
@click.option('--network', required=True,
              help='What network to reset')
@click.option('-y', '--yes', is_flag=True,
              help='Do not ask for confirmation')
@click.pass_context
def reset(ctx, ledger_uri, network, yes):
    confirm_reset(DeploymentLedger.from_uri(ledger_uri), network, yes)


if __name__ == '__main__':
    cli(obj={})
