from migrator.artifacts import DeployedInstance
from migrator.util import camel_case_to_snake_case, results_from_instances


def test_camel_case_to_snake_case():
    assert camel_case_to_snake_case('CoinracerMarketPlace') == 'coinracer_market_place'
    assert camel_case_to_snake_case('ERC20Token') == 'erc20_token'
    assert camel_case_to_snake_case('Migrations') == 'migrations'


def test_results_from_instances():
    instances = {
        'CoinracerMarketPlace': DeployedInstance('CoinracerMarketPlace', '0x' + '01' * 20, ()),
        'SafeMath': DeployedInstance('SafeMath', '0x' + '02' * 20, ()),
    }

    assert results_from_instances(instances, 'bsc') == {
        'coinracer_market_place_address': '0x' + '01' * 20,
        'safe_math_address': '0x' + '02' * 20,
        'network': 'bsc',
    }
