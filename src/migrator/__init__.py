from migrator.artifacts import ContractArtifact, DeployedInstance
from migrator.context import StepContext
from migrator.ledger import DeploymentLedger, DeploymentRecord
from migrator.runner import MigrationRunner, RunResult
from migrator.steps import MigrationStep
