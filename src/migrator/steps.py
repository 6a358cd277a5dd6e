import importlib.util
import logging
import os
import re
from collections import namedtuple

from migrator.errors import ConfigurationError
from migrator.ledger import STEP_ORIGIN

logger = logging.getLogger(__name__)

MIGRATION_FILE_RE = re.compile(r'^(\d+)_(\w+)\.py$')


class MigrationStep(namedtuple('MigrationStep', ('index', 'name', 'body'))):
    """One ordered unit of deployment work.

    :ivar index: Position of this step in the migration sequence, its identity
    :ivar name: Human-readable name
    :ivar body: Callable taking a StepContext
    """
    __slots__ = ()

    def run(self, context):
        return self.body(context)


def validate_steps(steps):
    """Ensure a step sequence is contiguous from the origin with no duplicates.

    :param steps: Iterable of MigrationSteps
    :return: Steps as a tuple, in index order
    :raises ConfigurationError: If the sequence is malformed
    """
    ordered = tuple(sorted(steps, key=lambda s: s.index))
    if not ordered:
        raise ConfigurationError('No migration steps defined')

    for expected, step in enumerate(ordered, STEP_ORIGIN):
        if not callable(step.body):
            raise ConfigurationError('Step {0} ({1}) has no callable body'.format(step.index, step.name))
        if step.index != expected:
            raise ConfigurationError('Step indices must be contiguous from {0}, expected {1} but found {2} ({3})'
                                     .format(STEP_ORIGIN, expected, step.index, step.name))

    return ordered


def load_step(path):
    """Load a migration step from a python file named <index>_<name>.py defining migrate(context).

    :param path: Path of the migration file
    :return: MigrationStep
    """
    filename = os.path.basename(path)
    match = MIGRATION_FILE_RE.match(filename)
    if match is None:
        raise ConfigurationError('{} is not a migration file'.format(filename))

    index, name = int(match.group(1)), match.group(2)
    spec = importlib.util.spec_from_file_location('migration_{0}_{1}'.format(index, name), path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)

    body = getattr(module, 'migrate', None)
    if not callable(body):
        raise ConfigurationError('{} does not define migrate(context)'.format(filename))

    return MigrationStep(index, name, body)


def load_steps(migrations_dir):
    """Load every migration file in a directory.

    :param migrations_dir: Directory containing migration files
    :return: Validated steps in index order
    """
    if not os.path.isdir(migrations_dir):
        raise ConfigurationError('Migrations directory {} does not exist'.format(migrations_dir))

    steps = []
    for filename in sorted(os.listdir(migrations_dir)):
        if MIGRATION_FILE_RE.match(filename) is None:
            if filename.endswith('.py'):
                logger.warning('%s is not named <index>_<name>.py, skipping', filename)
            continue

        steps.append(load_step(os.path.join(migrations_dir, filename)))

    steps = validate_steps(steps)
    logger.info('Migration order: %s', ', '.join('{0}_{1}'.format(s.index, s.name) for s in steps))
    return steps
