import re


# https://stackoverflow.com/questions/1175208/elegant-python-function-to-convert-camelcase-to-snake-case
def camel_case_to_snake_case(s):
    """Convert camel case contract names to snake case, for results files.

    :param s: String to convert
    :return: Converted string
    """
    s1 = re.sub(r'(.)([A-Z][a-z]+)', r'\1_\2', s)
    return re.sub(r'([a-z0-9])([A-Z])', r'\1_\2', s1).lower()


def results_from_instances(instances, network_id):
    """Build a results dictionary for consumers that want a flat map of deployed addresses.

    :param instances: Dictionary of contract name to DeployedInstance
    :param network_id: Network the instances are deployed on
    :return: Dictionary of <snake_case_name>_address to address
    """
    results = {camel_case_to_snake_case(name) + '_address': instance.address
               for name, instance in instances.items()}
    results['network'] = network_id
    return results
