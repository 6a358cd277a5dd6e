import logging

from eth_utils import to_checksum_address

logger = logging.getLogger(__name__)

CONTRACT_NAME = 'CoinracerMarketPlace'
TOKEN_ADDRESS = '0xfbb4f2f342c6daab63ab85b0226716c4d1e26f36'
FEE_WALLET_ADDRESS = '0x3A7951Ff955d4e0b6CBBe54De8593606e5e0FA08'


def migrate(context):
    """Deploy the marketplace against the token and fee wallet.

    :param context: StepContext for this migration
    :return: None
    """
    marketplace = context.resolve(CONTRACT_NAME)
    context.deploy(marketplace, [to_checksum_address(TOKEN_ADDRESS), to_checksum_address(FEE_WALLET_ADDRESS)])

    instance = context.get_deployed(CONTRACT_NAME)
    logger.info('MarketPlace deployed at: %s', instance.address)
