#!/usr/bin/env python3
"""Tests for providers/aws.py - EC2 provider against a mocked client."""

import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError
from providers import get_provider, list_providers
from providers.aws import AwsProvider
from providers.base import NetworkIdentity, ProviderError, ResourceNotFoundError
from provisioning.orchestrator import ProvisionRequest


def _client_error(code: str, operation: str = 'Op') -> ClientError:
    return ClientError({'Error': {'Code': code, 'Message': code}}, operation)


def _request(**kwargs) -> ProvisionRequest:
    defaults = dict(name='web1', credential_path='/k', image='ami-1', size='t3.small',
                    region='eu-west-1', network='subnet-1', key_id='deploy')
    defaults.update(kwargs)
    return ProvisionRequest(**defaults)


@pytest.fixture
def ec2():
    client = MagicMock()
    client.describe_images.return_value = {'Images': [{'ImageId': 'ami-1', 'Name': 'ubuntu-noble-24.04'}]}
    client.describe_subnets.return_value = {'Subnets': [{'SubnetId': 'subnet-1', 'VpcId': 'vpc-1'}]}
    client.describe_key_pairs.return_value = {'KeyPairs': [{'KeyName': 'deploy'}]}
    client.describe_security_groups.return_value = {'SecurityGroups': [{'GroupId': 'sg-1'}]}
    client.run_instances.return_value = {'Instances': [{'InstanceId': 'i-123'}]}
    return client


@pytest.fixture
def provider(ec2):
    return AwsProvider(region='eu-west-1', client=ec2)


class TestRegistry:
    """Test provider registration."""

    def test_registered(self):
        assert {'aws', 'digitalocean'} <= set(list_providers())

    def test_unknown_provider(self):
        with pytest.raises(ProviderError) as exc_info:
            get_provider('linode', MagicMock())
        assert exc_info.value.code == 'E512'

    def test_from_config_reads_secrets(self):
        config = MagicMock(aws_region='us-east-2')
        config.get_secret.side_effect = lambda key, required=True: {
            'providers.aws.access_key_id': 'AKIA',
            'providers.aws.secret_access_key': 'secret',
        }[key]
        provider = get_provider('aws', config)
        assert isinstance(provider, AwsProvider)
        assert provider.region == 'us-east-2'

    def test_client_built_lazily(self):
        with patch('providers.aws.boto3.client') as mock_client:
            provider = AwsProvider(region='eu-west-1', access_key_id='AKIA', secret_access_key='s')
            mock_client.assert_not_called()
            provider.ec2
            args, kwargs = mock_client.call_args
            assert args == ('ec2',)
            assert kwargs['region_name'] == 'eu-west-1'
            assert kwargs['aws_access_key_id'] == 'AKIA'


class TestDescribeAccount:
    """Test account enumeration."""

    def test_lists_images_subnets_keys(self, provider):
        account = provider.describe_account(_request())
        assert account.images == ['ami-1']
        assert account.networks == ['subnet-1']
        assert account.keys == ['deploy']

    def test_unknown_image_is_empty(self, provider, ec2):
        ec2.describe_images.side_effect = _client_error('InvalidAMIID.NotFound')
        assert provider.describe_account(_request()).images == []

    def test_vpc_filter(self, provider, ec2):
        provider.describe_account(_request(options={'vpc_id': 'vpc-9'}))
        filters = ec2.describe_subnets.call_args.kwargs['Filters']
        assert filters == [{'Name': 'vpc-id', 'Values': ['vpc-9']}]

    def test_api_error_wrapped(self, provider, ec2):
        ec2.describe_key_pairs.side_effect = _client_error('AuthFailure')
        with pytest.raises(ProviderError) as exc_info:
            provider.describe_account(_request())
        assert 'AuthFailure' in str(exc_info.value)

    def test_default_username_from_image_name(self, provider, ec2):
        provider.describe_account(_request())
        assert provider.default_username(_request()) == 'ubuntu'
        ec2.describe_images.return_value = {'Images': [{'ImageId': 'ami-1', 'Name': 'debian-12-amd64'}]}
        provider.describe_account(_request())
        assert provider.default_username(_request()) == 'admin'


class TestCreateResource:
    """Test instance launch."""

    def test_launches_into_subnet(self, provider, ec2):
        assert provider.create_resource(_request()) == 'i-123'
        kwargs = ec2.run_instances.call_args.kwargs
        assert kwargs['ImageId'] == 'ami-1'
        assert kwargs['KeyName'] == 'deploy'
        assert kwargs['NetworkInterfaces'][0]['SubnetId'] == 'subnet-1'
        assert kwargs['NetworkInterfaces'][0]['Groups'] == ['sg-1']
        tags = kwargs['TagSpecifications'][0]['Tags']
        assert {'Key': 'Name', 'Value': 'web1'} in tags

    def test_creates_security_group_when_missing(self, provider, ec2):
        ec2.describe_security_groups.return_value = {'SecurityGroups': []}
        ec2.create_security_group.return_value = {'GroupId': 'sg-new'}
        provider.create_resource(_request())
        ec2.authorize_security_group_ingress.assert_called_once()
        assert ec2.run_instances.call_args.kwargs['NetworkInterfaces'][0]['Groups'] == ['sg-new']

    def test_security_group_cleanup_on_authorize_failure(self, provider, ec2):
        """A group that cannot be configured should be deleted again."""
        ec2.describe_security_groups.return_value = {'SecurityGroups': []}
        ec2.create_security_group.return_value = {'GroupId': 'sg-new'}
        ec2.authorize_security_group_ingress.side_effect = _client_error('RulesPerSecurityGroupLimitExceeded')
        with pytest.raises(ProviderError):
            provider.create_resource(_request())
        ec2.delete_security_group.assert_called_once_with(GroupId='sg-new')
        ec2.run_instances.assert_not_called()

    def test_orphaned_security_group_named(self, provider, ec2):
        ec2.describe_security_groups.return_value = {'SecurityGroups': []}
        ec2.create_security_group.return_value = {'GroupId': 'sg-new'}
        ec2.authorize_security_group_ingress.side_effect = _client_error('Throttling')
        ec2.delete_security_group.side_effect = _client_error('DependencyViolation')
        with pytest.raises(ProviderError) as exc_info:
            provider.create_resource(_request())
        assert 'sg-new' in str(exc_info.value)

    def test_unknown_subnet(self, provider, ec2):
        ec2.describe_subnets.return_value = {'Subnets': []}
        with pytest.raises(ProviderError):
            provider.create_resource(_request())

    def test_connection_error_wrapped(self, provider, ec2):
        ec2.run_instances.side_effect = EndpointConnectionError(endpoint_url='https://ec2')
        with pytest.raises(ProviderError):
            provider.create_resource(_request())


class TestInstanceState:
    """Test status and address lookup."""

    def test_status_and_address(self, provider, ec2):
        ec2.describe_instances.return_value = {'Reservations': [{'Instances': [
            {'InstanceId': 'i-123', 'State': {'Name': 'running'}, 'PublicIpAddress': '198.51.100.7'},
        ]}]}
        assert provider.get_resource_status('i-123') == 'running'
        assert provider.get_resource_address('i-123') == '198.51.100.7'

    def test_missing_instance(self, provider, ec2):
        ec2.describe_instances.side_effect = _client_error('InvalidInstanceID.NotFound')
        with pytest.raises(ResourceNotFoundError):
            provider.get_resource_status('i-gone')

    def test_empty_reservations(self, provider, ec2):
        ec2.describe_instances.return_value = {'Reservations': []}
        with pytest.raises(ResourceNotFoundError):
            provider.get_resource_status('i-gone')


class TestTeardown:
    """Test destroy and release."""

    def test_destroy(self, provider, ec2):
        provider.destroy_resource('i-123')
        ec2.terminate_instances.assert_called_once_with(InstanceIds=['i-123'])

    def test_destroy_already_gone(self, provider, ec2):
        ec2.terminate_instances.side_effect = _client_error('InvalidInstanceID.NotFound')
        provider.destroy_resource('i-123')

    def test_destroy_error_raises(self, provider, ec2):
        ec2.terminate_instances.side_effect = _client_error('UnauthorizedOperation')
        with pytest.raises(ProviderError):
            provider.destroy_resource('i-123')

    def test_release_disassociates_first(self, provider, ec2):
        ec2.describe_addresses.return_value = {'Addresses': [{'AllocationId': 'eipalloc-1',
                                                              'AssociationId': 'eipassoc-1'}]}
        provider.release_network_identity('eipalloc-1')
        ec2.disassociate_address.assert_called_once_with(AssociationId='eipassoc-1')
        ec2.release_address.assert_called_once_with(AllocationId='eipalloc-1')

    def test_release_already_gone(self, provider, ec2):
        ec2.describe_addresses.side_effect = _client_error('InvalidAllocationID.NotFound')
        provider.release_network_identity('eipalloc-1')
        ec2.release_address.assert_not_called()


class TestNetworkIdentity:
    """Test Elastic IP handling."""

    def test_allocate(self, provider, ec2):
        ec2.allocate_address.return_value = {'AllocationId': 'eipalloc-1', 'PublicIp': '203.0.113.5'}
        identity = provider.allocate_network_identity(_request())
        assert identity == NetworkIdentity('eipalloc-1', '203.0.113.5')
        assert ec2.allocate_address.call_args.kwargs['Domain'] == 'vpc'

    def test_associate(self, provider, ec2):
        provider.associate_network_identity(NetworkIdentity('eipalloc-1', '203.0.113.5'), 'i-123')
        ec2.associate_address.assert_called_once_with(AllocationId='eipalloc-1', InstanceId='i-123')

    def test_elastic_ip_optional(self, provider):
        assert provider.requires_network_identity(_request()) is True
        assert provider.requires_network_identity(_request(options={'elastic_ip': False})) is False
