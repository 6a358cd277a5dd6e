import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import create_engine, Column, DateTime, ForeignKey, Integer, JSON, String, UniqueConstraint
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import declarative_base, relationship, scoped_session, sessionmaker

from migrator.artifacts import DeployedInstance
from migrator.errors import ConflictError, LedgerOrderError, NotFoundError

logger = logging.getLogger(__name__)

STEP_ORIGIN = 0
DEFAULT_LEDGER_URI = 'sqlite:///ledger.db'

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


class DeploymentRecord(Base):
    """Database model for a completed migration step.
    """

    __tablename__ = 'deployment_records'
    __table_args__ = (UniqueConstraint('network_id', 'step_index', name='uq_network_step'),)

    id = Column(Integer, primary_key=True)
    network_id = Column(String, nullable=False, index=True)
    step_index = Column(Integer, nullable=False)
    step_name = Column(String)
    contract_name = Column(String)
    address = Column(String)
    transaction_hash = Column(String)
    completed_at = Column(DateTime(timezone=True))

    contracts = relationship('DeployedContract', backref='record', cascade='all, delete-orphan',
                             order_by='DeployedContract.position')

    def __init__(self, network_id, step_index, step_name=None, contract_name=None, address=None,
                 transaction_hash=None, completed_at=None, contracts=()):
        """Create a new record.

        :param network_id: Network the step was run against
        :param step_index: Index of the completed step
        :param step_name: Name of the completed step
        :param contract_name: Name of the contract the step produced, if any
        :param address: Address of the contract the step produced, if any
        :param transaction_hash: Hash of the transaction that created the contract, if any
        :param completed_at: Timestamp of step completion, defaults to now
        :param contracts: DeployedContracts for every deployment the step performed
        """
        self.network_id = network_id
        self.step_index = step_index
        self.step_name = step_name
        self.contract_name = contract_name
        self.address = address
        self.transaction_hash = transaction_hash
        self.completed_at = completed_at if completed_at is not None else utcnow()
        self.contracts = list(contracts)

    def __repr__(self):
        return '<DeploymentRecord {0}, {1}, {2}, {3}>'.format(self.network_id, self.step_index, self.contract_name,
                                                              self.address)


class DeployedContract(Base):
    """Database model for a single contract deployed within a step.
    """

    __tablename__ = 'deployed_contracts'
    id = Column(Integer, primary_key=True)
    position = Column(Integer, nullable=False)
    contract_name = Column(String, nullable=False, index=True)
    address = Column(String, nullable=False)
    transaction_hash = Column(String)
    abi = Column(JSON(none_as_null=True))

    record_id = Column(Integer, ForeignKey('deployment_records.id'), nullable=False)

    def __init__(self, position, contract_name, address, transaction_hash, abi):
        self.position = position
        self.contract_name = contract_name
        self.address = address
        self.transaction_hash = transaction_hash
        self.abi = list(abi)

    def instance(self):
        return DeployedInstance(self.contract_name, self.address, tuple(self.abi or ()))

    def __repr__(self):
        return '<DeployedContract {0}, {1}>'.format(self.contract_name, self.address)


def connect(db_uri):
    """Connect to a database to record deployments.

    :param db_uri: Database URI to connect to
    :return: SQLAlchemy session for interacting with this database
    """
    engine = create_engine(db_uri)
    session = scoped_session(sessionmaker(autoflush=False, bind=engine))
    Base.metadata.create_all(bind=engine)

    return session


class DeploymentLedger(object):
    """Durable record of which migration steps have completed on which network.

    The ledger is the only writer of DeploymentRecords. Records for a network always form a gap free prefix of the
    step sequence, and each (network_id, step_index) pair is written at most once.
    """

    def __init__(self, session):
        """Create a new ledger.

        :param session: SQLAlchemy session, as returned from connect
        """
        self.session = session
        self.__locks = {}
        self.__locks_lock = threading.Lock()

    @classmethod
    def from_uri(cls, db_uri=DEFAULT_LEDGER_URI):
        return cls(connect(db_uri))

    @contextmanager
    def lock(self, network_id):
        """Hold the writer lock for a network.

        :param network_id: Network to lock
        """
        with self.__locks_lock:
            lock = self.__locks.setdefault(network_id, threading.RLock())

        with lock:
            yield

    def last_completed_index(self, network_id):
        """Highest step index recorded for a network.

        :param network_id: Network to check
        :return: Step index, or None if nothing has been recorded
        """
        record = self.session.query(DeploymentRecord) \
            .filter(DeploymentRecord.network_id == network_id) \
            .order_by(DeploymentRecord.step_index.desc()) \
            .first()

        return record.step_index if record is not None else None

    def records(self, network_id):
        """All records for a network, in step order.

        :param network_id: Network to list
        :return: List of DeploymentRecords
        """
        return self.session.query(DeploymentRecord) \
            .filter(DeploymentRecord.network_id == network_id) \
            .order_by(DeploymentRecord.step_index) \
            .all()

    def record(self, network_id, step_index, record):
        """Record a completed step.

        :param network_id: Network the step was run against
        :param step_index: Index of the completed step
        :param record: DeploymentRecord to persist
        :return: The persisted record
        :raises ConflictError: If the step is already recorded for this network
        :raises LedgerOrderError: If an earlier step has not been recorded
        """
        if record.network_id != network_id or record.step_index != step_index:
            raise ValueError('Record is for {0}:{1}, not {2}:{3}'.format(record.network_id, record.step_index,
                                                                         network_id, step_index))

        with self.lock(network_id):
            existing = self.session.query(DeploymentRecord) \
                .filter(DeploymentRecord.network_id == network_id, DeploymentRecord.step_index == step_index) \
                .first()
            if existing is not None:
                raise ConflictError(network_id, step_index)

            last = self.last_completed_index(network_id)
            expected = STEP_ORIGIN if last is None else last + 1
            if step_index != expected:
                raise LedgerOrderError('Cannot record step {0} for network {1}, next step is {2}'.format(
                    step_index, network_id, expected))

            self.session.add(record)
            try:
                self.session.commit()
            except IntegrityError as e:
                # Another writer got there first
                self.session.rollback()
                raise ConflictError(network_id, step_index) from e
            except Exception:
                # Never leave the record pending, a later commit would persist it
                self.session.rollback()
                raise

        logger.debug('Recorded %s', record)
        return record

    def lookup(self, network_id, contract_name):
        """Find the most recent deployment of a contract on a network.

        :param network_id: Network to search
        :param contract_name: Name of the contract
        :return: DeployedInstance for the contract
        :raises NotFoundError: If the contract was never deployed on this network
        """
        contract = self.session.query(DeployedContract) \
            .join(DeploymentRecord) \
            .filter(DeploymentRecord.network_id == network_id, DeployedContract.contract_name == contract_name) \
            .order_by(DeploymentRecord.step_index.desc(), DeployedContract.position.desc()) \
            .first()

        if contract is None:
            raise NotFoundError('No deployment of {0} recorded on network {1}'.format(contract_name, network_id))

        return contract.instance()

    def instances(self, network_id):
        """Most recent deployment of every contract on a network.

        :param network_id: Network to list
        :return: Dictionary of contract name to DeployedInstance
        """
        ret = {}
        for record in self.records(network_id):
            for contract in record.contracts:
                ret[contract.contract_name] = contract.instance()

        return ret

    def reset(self, network_id):
        """Erase every record for a network. Only ever invoked explicitly by an operator.

        :param network_id: Network to erase
        :return: Number of records erased
        """
        with self.lock(network_id):
            records = self.records(network_id)
            for record in records:
                self.session.delete(record)
            self.session.commit()

        logger.warning('Erased %s ledger records for network %s', len(records), network_id)
        return len(records)
