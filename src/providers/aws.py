"""AWS EC2 provider.

Instances are launched into a subnet behind a shared `fleet` security group
and addressed through an Elastic IP (the network identity).
"""

import logging
from typing import Any, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from providers import register_provider
from providers.base import AccountDescription, NetworkIdentity, ProviderError, ResourceNotFoundError

logger = logging.getLogger(__name__)

MANAGED_BY = 'fleet-driver'
SECURITY_GROUP_NAME = 'fleet'
SECURITY_GROUP_DESCRIPTION = 'Managed by fleet-driver; host firewall is managed by ufw'

_NOT_FOUND_CODES = {
    'InvalidInstanceID.NotFound',
    'InvalidInstanceID.Malformed',
    'InvalidAllocationID.NotFound',
    'InvalidAMIID.NotFound',
    'InvalidAMIID.Malformed',
}


def _error_code(exc: Exception) -> str:
    if isinstance(exc, ClientError):
        return exc.response.get('Error', {}).get('Code', '')
    return ''


def _tags(resource_type: str, name: str) -> list[dict]:
    return [{
        'ResourceType': resource_type,
        'Tags': [
            {'Key': 'Name', 'Value': name},
            {'Key': 'ManagedBy', 'Value': MANAGED_BY},
        ],
    }]


@register_provider('aws')
class AwsProvider:
    """EC2 instances with Elastic IPs."""
    name = 'aws'
    ready_statuses = frozenset({'running'})
    failed_statuses = frozenset({'terminated', 'shutting-down', 'stopping', 'stopped'})

    def __init__(self, region: str = '', access_key_id: str = '', secret_access_key: str = '',
                 client: Any = None):
        self.region = region
        self._access_key_id = access_key_id
        self._secret_access_key = secret_access_key
        self._client = client
        self._image_names: dict[str, str] = {}

    @classmethod
    def from_config(cls, config) -> 'AwsProvider':
        return cls(
            region=config.aws_region,
            access_key_id=config.get_secret('providers.aws.access_key_id', required=False),
            secret_access_key=config.get_secret('providers.aws.secret_access_key', required=False),
        )

    @property
    def ec2(self):
        if self._client is None:
            kwargs: dict[str, Any] = {
                'config': Config(retries={'max_attempts': 5, 'mode': 'standard'}),
            }
            if self.region:
                kwargs['region_name'] = self.region
            # Fall back to the default credential chain when no explicit keys
            if self._access_key_id and self._secret_access_key:
                kwargs['aws_access_key_id'] = self._access_key_id
                kwargs['aws_secret_access_key'] = self._secret_access_key
            self._client = boto3.client('ec2', **kwargs)
        return self._client

    def _call(self, action: str, operation: str, **params) -> dict:
        try:
            return getattr(self.ec2, operation)(**params)
        except (BotoCoreError, ClientError) as e:
            raise ProviderError(self.name, f"{action} failed: {e}") from e

    def describe_account(self, request) -> AccountDescription:
        images: list[str] = []
        if request.image:
            try:
                result = self.ec2.describe_images(ImageIds=[request.image])
            except ClientError as e:
                if _error_code(e) not in _NOT_FOUND_CODES:
                    raise ProviderError(self.name, f"Describe images failed: {e}") from e
                result = {'Images': []}
            except BotoCoreError as e:
                raise ProviderError(self.name, f"Describe images failed: {e}") from e
            for image in result.get('Images', []):
                self._image_names[image['ImageId']] = image.get('Name', '')
                images.append(image['ImageId'])

        subnet_filters = []
        if vpc_id := request.options.get('vpc_id'):
            subnet_filters.append({'Name': 'vpc-id', 'Values': [vpc_id]})
        subnets = self._call('Describe subnets', 'describe_subnets', Filters=subnet_filters)
        keys = self._call('Describe key pairs', 'describe_key_pairs')

        return AccountDescription(
            images=images,
            networks=[s['SubnetId'] for s in subnets.get('Subnets', [])],
            keys=[k['KeyName'] for k in keys.get('KeyPairs', [])],
        )

    def ensure_security_group(self, vpc_id: str) -> str:
        """Return the id of the shared security group in a VPC, creating it if needed."""
        found = self._call('Describe security groups', 'describe_security_groups', Filters=[
            {'Name': 'vpc-id', 'Values': [vpc_id]},
            {'Name': 'group-name', 'Values': [SECURITY_GROUP_NAME]},
        ])
        if groups := found.get('SecurityGroups'):
            return groups[0]['GroupId']

        created = self._call('Create security group', 'create_security_group',
                             GroupName=SECURITY_GROUP_NAME,
                             Description=SECURITY_GROUP_DESCRIPTION,
                             VpcId=vpc_id,
                             TagSpecifications=_tags('security-group', SECURITY_GROUP_NAME))
        group_id = created['GroupId']
        try:
            self.ec2.authorize_security_group_ingress(GroupId=group_id, IpPermissions=[{
                'IpProtocol': '-1',
                'IpRanges': [{'CidrIp': '0.0.0.0/0'}],
                'Ipv6Ranges': [{'CidrIpv6': '::/0'}],
            }])
        except (BotoCoreError, ClientError) as e:
            try:
                self.ec2.delete_security_group(GroupId=group_id)
            except (BotoCoreError, ClientError) as cleanup_error:
                raise ProviderError(
                    self.name,
                    f"Configure security group failed: {e}; orphaned group {group_id} "
                    f"could not be deleted: {cleanup_error}") from e
            raise ProviderError(self.name, f"Configure security group failed: {e}") from e
        logger.info(f"[aws] Created security group {group_id} in {vpc_id}")
        return group_id

    def create_resource(self, request) -> str:
        subnets = self._call('Describe subnets', 'describe_subnets', SubnetIds=[request.network])
        if not subnets.get('Subnets'):
            raise ProviderError(self.name, f"Subnet not found: {request.network}")
        vpc_id = subnets['Subnets'][0]['VpcId']
        group_id = self.ensure_security_group(vpc_id)

        result = self._call(
            'Run instance', 'run_instances',
            ImageId=request.image,
            InstanceType=request.size,
            KeyName=request.key_id,
            MinCount=1,
            MaxCount=1,
            Monitoring={'Enabled': bool(request.options.get('monitoring', False))},
            NetworkInterfaces=[{
                'DeviceIndex': 0,
                'SubnetId': request.network,
                'Groups': [group_id],
                'AssociatePublicIpAddress': True,
            }],
            TagSpecifications=_tags('instance', request.name),
        )
        instances = result.get('Instances') or []
        if not instances:
            raise ProviderError(self.name, "Run instance returned no instances")
        return instances[0]['InstanceId']

    def _describe_instance(self, instance_id: str) -> dict:
        try:
            result = self.ec2.describe_instances(InstanceIds=[instance_id])
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                raise ResourceNotFoundError(self.name, instance_id) from e
            raise ProviderError(self.name, f"Describe instance failed: {e}") from e
        except BotoCoreError as e:
            raise ProviderError(self.name, f"Describe instance failed: {e}") from e

        for reservation in result.get('Reservations', []):
            for instance in reservation.get('Instances', []):
                return instance
        raise ResourceNotFoundError(self.name, instance_id)

    def get_resource_status(self, resource_id: str) -> str:
        return self._describe_instance(resource_id)['State']['Name']

    def get_resource_address(self, resource_id: str) -> Optional[str]:
        return self._describe_instance(resource_id).get('PublicIpAddress')

    def destroy_resource(self, resource_id: str) -> None:
        try:
            self.ec2.terminate_instances(InstanceIds=[resource_id])
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                logger.debug(f"[aws] Instance {resource_id} already gone")
                return
            raise ProviderError(self.name, f"Terminate instance failed: {e}") from e
        except BotoCoreError as e:
            raise ProviderError(self.name, f"Terminate instance failed: {e}") from e
        logger.info(f"[aws] Terminated instance {resource_id}")

    def requires_network_identity(self, request) -> bool:
        return bool(request.options.get('elastic_ip', True))

    def allocate_network_identity(self, request) -> NetworkIdentity:
        result = self._call('Allocate Elastic IP', 'allocate_address', Domain='vpc',
                            TagSpecifications=_tags('elastic-ip', request.name))
        return NetworkIdentity(id=result['AllocationId'], address=result['PublicIp'])

    def associate_network_identity(self, identity: NetworkIdentity, resource_id: str) -> None:
        self._call('Associate Elastic IP', 'associate_address',
                   AllocationId=identity.id, InstanceId=resource_id)

    def release_network_identity(self, identity_id: str) -> None:
        try:
            described = self.ec2.describe_addresses(AllocationIds=[identity_id])
            for address in described.get('Addresses', []):
                if association_id := address.get('AssociationId'):
                    self.ec2.disassociate_address(AssociationId=association_id)
            self.ec2.release_address(AllocationId=identity_id)
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                logger.debug(f"[aws] Elastic IP {identity_id} already released")
                return
            raise ProviderError(self.name, f"Release Elastic IP failed: {e}") from e
        except BotoCoreError as e:
            raise ProviderError(self.name, f"Release Elastic IP failed: {e}") from e
        logger.info(f"[aws] Released Elastic IP {identity_id}")

    def default_username(self, request) -> str:
        name = self._image_names.get(request.image, '').lower()
        if 'debian' in name:
            return 'admin'
        return 'ubuntu'
