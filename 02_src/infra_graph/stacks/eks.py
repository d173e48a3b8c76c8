"""Two-tier application on EKS: network, IAM, cluster and Kubernetes workloads.

The stack is expressed as plain declarations against a ResourceGraphBuilder;
every cross-resource value is a Deferred reference so the orchestrator derives
ordering from it.
"""

import json
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

from ..graph_model import ResourceId
from ..graph_orchestrator import ResourceGraphBuilder
from ..values import JsonDocument, Kubeconfig, NamedOutput, Template, ref

VPC = "aws:ec2/vpc:Vpc"
SUBNET = "aws:ec2/subnet:Subnet"
INTERNET_GATEWAY = "aws:ec2/internetGateway:InternetGateway"
ROUTE_TABLE = "aws:ec2/routeTable:RouteTable"
ROUTE_TABLE_ASSOCIATION = "aws:ec2/routeTableAssociation:RouteTableAssociation"
SECURITY_GROUP = "aws:ec2/securityGroup:SecurityGroup"
SECURITY_GROUP_RULE = "aws:ec2/securityGroupRule:SecurityGroupRule"
IAM_ROLE = "aws:iam/role:Role"
ROLE_POLICY_ATTACHMENT = "aws:iam/rolePolicyAttachment:RolePolicyAttachment"
OIDC_PROVIDER = "aws:iam/openIdConnectProvider:OpenIdConnectProvider"
EKS_CLUSTER = "aws:eks/cluster:Cluster"
EKS_NODE_GROUP = "aws:eks/nodeGroup:NodeGroup"
EKS_ADDON = "aws:eks/addon:Addon"
K8S_PROVIDER = "pulumi:providers:kubernetes"
K8S_DEPLOYMENT = "kubernetes:apps/v1:Deployment"
K8S_SERVICE = "kubernetes:core/v1:Service"
K8S_SERVICE_ACCOUNT = "kubernetes:core/v1:ServiceAccount"

CLUSTER_POLICIES = ("AmazonEKSClusterPolicy", "AmazonEKSServicePolicy")
NODE_POLICIES = (
    "AmazonEKSWorkerNodePolicy",
    "AmazonEKS_CNI_Policy",
    "AmazonEC2ContainerRegistryReadOnly",
)

# Values a real AWS/Kubernetes API computes, used when simulating with LocalProvider.
SIMULATED_OUTPUTS: Dict[str, Dict[str, object]] = {
    EKS_CLUSTER: {
        "endpoint": "https://EXAMPLE0123456789.gr7.us-east-1.eks.amazonaws.com",
        "certificateAuthority": {"data": "LS0tLS1CRUdJTiBDRVJUSUZJQ0FURS0tLS0t"},
        "version": "1.30",
        "identities": [
            {"oidcs": [{"issuer": "oidc.eks.us-east-1.amazonaws.com/id/EXAMPLE0123456789"}]}
        ],
    },
    K8S_SERVICE: {
        "status": {"loadBalancer": {"ingress": [{"hostname": "frontend-0123.elb.amazonaws.com"}]}}
    },
}


@dataclass(frozen=True)
class EksStackSettings:
    region: str = "us-east-1"
    vpc_cidr: str = "10.0.0.0/16"
    subnets: Tuple[Tuple[str, str], ...] = (
        ("10.0.1.0/24", "us-east-1a"),
        ("10.0.2.0/24", "us-east-1b"),
    )
    instance_types: Tuple[str, ...] = ("t3.medium",)
    desired_size: int = 2
    min_size: int = 1
    max_size: int = 3
    namespace: str = "default"
    backend_image: str = "ghcr.io/colema18/hello-pulumi-app:latest"
    backend_port: int = 5050
    frontend_image: str = "ghcr.io/colema18/hello-pulumi-ui:latest"
    frontend_port: int = 80
    frontend_service_type: str = "LoadBalancer"
    enable_security_groups: bool = False
    enable_oidc: bool = False
    backend_service_account: str = "backend"
    backend_policies: Tuple[str, ...] = ("AmazonS3ReadOnlyAccess",)


def assume_role_policy(service: str) -> str:
    return json.dumps(
        {
            "Version": "2012-10-17",
            "Statement": [
                {
                    "Sid": "AllowAssumeRole",
                    "Effect": "Allow",
                    "Principal": {"Service": service},
                    "Action": "sts:AssumeRole",
                }
            ],
        }
    )


def web_identity_trust_policy(namespace: str, service_account: str) -> str:
    """Trust policy text with ``${provider_arn}`` and ``${issuer}`` placeholders."""
    return json.dumps(
        {
            "Version": "2012-10-17",
            "Statement": [
                {
                    "Effect": "Allow",
                    "Principal": {"Federated": "${provider_arn}"},
                    "Action": "sts:AssumeRoleWithWebIdentity",
                    "Condition": {
                        "StringEquals": {
                            "${issuer}:sub": f"system:serviceaccount:{namespace}:{service_account}",
                            "${issuer}:aud": "sts.amazonaws.com",
                        }
                    },
                }
            ],
        }
    )


def attach_role_policies(
    builder: ResourceGraphBuilder,
    role: ResourceId,
    name_prefix: str,
    policy_names: Sequence[str],
) -> List[ResourceId]:
    return [
        builder.add_resource(
            ROLE_POLICY_ATTACHMENT,
            f"{name_prefix}-{index}",
            {"role": ref(role, "name"), "policyArn": f"arn:aws:iam::aws:policy/{policy_name}"},
        )
        for index, policy_name in enumerate(policy_names)
    ]


def declare_eks_stack(
    builder: ResourceGraphBuilder, settings: EksStackSettings = EksStackSettings()
) -> Dict[str, ResourceId]:
    declared: Dict[str, ResourceId] = {}
    declared.update(_declare_network(builder, settings))
    declared.update(_declare_cluster(builder, settings, declared))
    declared.update(_declare_workloads(builder, settings, declared))
    return declared


def _declare_network(builder: ResourceGraphBuilder, settings: EksStackSettings) -> Dict[str, ResourceId]:
    vpc = builder.add_resource(
        VPC,
        "my-vpc",
        {"cidrBlock": settings.vpc_cidr, "enableDnsHostnames": True, "enableDnsSupport": True},
    )
    subnets = [
        builder.add_resource(
            SUBNET,
            f"my-subnet-{index}",
            {
                "vpcId": ref(vpc),
                "cidrBlock": cidr_block,
                "availabilityZone": zone,
                "mapPublicIpOnLaunch": True,
            },
        )
        for index, (cidr_block, zone) in enumerate(settings.subnets, start=1)
    ]
    igw = builder.add_resource(INTERNET_GATEWAY, "my-igw", {"vpcId": ref(vpc)})
    route_table = builder.add_resource(
        ROUTE_TABLE,
        "my-route-table",
        {"vpcId": ref(vpc), "routes": [{"cidrBlock": "0.0.0.0/0", "gatewayId": ref(igw)}]},
    )
    for index, subnet in enumerate(subnets, start=1):
        builder.add_resource(
            ROUTE_TABLE_ASSOCIATION,
            f"rt-assoc-{index}",
            {"subnetId": ref(subnet), "routeTableId": ref(route_table)},
        )

    declared = {"vpc": vpc, "route_table": route_table}
    declared.update({f"subnet_{index}": subnet for index, subnet in enumerate(subnets, start=1)})

    if settings.enable_security_groups:
        security_group = builder.add_resource(
            SECURITY_GROUP,
            "eks-cluster-sg",
            {
                "vpcId": ref(vpc),
                "description": "EKS control plane security group",
                "egress": [
                    {"protocol": "-1", "fromPort": 0, "toPort": 0, "cidrBlocks": ["0.0.0.0/0"]}
                ],
            },
        )
        builder.add_resource(
            SECURITY_GROUP_RULE,
            "eks-cluster-https-ingress",
            {
                "type": "ingress",
                "protocol": "tcp",
                "fromPort": 443,
                "toPort": 443,
                "cidrBlocks": ["0.0.0.0/0"],
                "securityGroupId": ref(security_group),
            },
        )
        declared["security_group"] = security_group
    return declared


def _declare_cluster(
    builder: ResourceGraphBuilder,
    settings: EksStackSettings,
    network: Dict[str, ResourceId],
) -> Dict[str, ResourceId]:
    subnet_refs = [ref(network[key]) for key in sorted(network) if key.startswith("subnet_")]

    cluster_role = builder.add_resource(
        IAM_ROLE, "clusterRole", {"assumeRolePolicy": assume_role_policy("eks.amazonaws.com")}
    )
    attach_role_policies(builder, cluster_role, "clusterPolicyAttach", CLUSTER_POLICIES)

    node_role = builder.add_resource(
        IAM_ROLE, "nodeRole", {"assumeRolePolicy": assume_role_policy("ec2.amazonaws.com")}
    )
    node_attachments = attach_role_policies(builder, node_role, "nodePolicyAttach", NODE_POLICIES)

    vpc_config = {"subnetIds": subnet_refs}
    if "security_group" in network:
        vpc_config["securityGroupIds"] = [ref(network["security_group"])]
    cluster = builder.add_resource(
        EKS_CLUSTER, "my-cluster", {"roleArn": ref(cluster_role, "arn"), "vpcConfig": vpc_config}
    )
    node_group = builder.add_resource(
        EKS_NODE_GROUP,
        "my-node-group",
        {
            "clusterName": ref(cluster, "name"),
            "nodeRoleArn": ref(node_role, "arn"),
            "subnetIds": list(subnet_refs),
            "scalingConfig": {
                "desiredSize": settings.desired_size,
                "minSize": settings.min_size,
                "maxSize": settings.max_size,
            },
            "instanceTypes": list(settings.instance_types),
        },
        depends_on=node_attachments,
    )
    builder.add_resource(
        EKS_ADDON,
        "coreDnsAddon",
        {
            "clusterName": ref(cluster, "name"),
            "addonName": "coredns",
            "resolveConflictsOnUpdate": "PRESERVE",
        },
        depends_on=[cluster],
    )

    builder.add_output(
        "kubeconfig",
        Kubeconfig(
            endpoint=ref(cluster, "endpoint"),
            certificate_authority=ref(cluster, "certificateAuthority"),
            cluster_name=ref(cluster, "name"),
        ),
    )
    builder.add_output(
        "updateKubeconfigCommand",
        Template(
            "aws eks update-kubeconfig --region ${region} --name ${name}",
            {"region": settings.region, "name": ref(cluster, "name")},
        ),
    )

    declared = {"cluster_role": cluster_role, "node_role": node_role, "cluster": cluster, "node_group": node_group}
    if settings.enable_oidc:
        oidc_provider = builder.add_resource(
            OIDC_PROVIDER,
            "eks-oidc-provider",
            {
                "url": ref(cluster, "identities.0.oidcs.0.issuer"),
                "clientIdLists": ["sts.amazonaws.com"],
            },
        )
        irsa_role = builder.add_resource(
            IAM_ROLE,
            "backend-irsa-role",
            {
                "assumeRolePolicy": Template(
                    web_identity_trust_policy(settings.namespace, settings.backend_service_account),
                    {"provider_arn": ref(oidc_provider, "arn"), "issuer": ref(oidc_provider, "url")},
                )
            },
        )
        attach_role_policies(builder, irsa_role, "backendIrsaPolicyAttach", settings.backend_policies)
        declared.update({"oidc_provider": oidc_provider, "irsa_role": irsa_role})
    return declared


def _declare_workloads(
    builder: ResourceGraphBuilder,
    settings: EksStackSettings,
    declared: Dict[str, ResourceId],
) -> Dict[str, ResourceId]:
    k8s_provider = builder.add_resource(
        K8S_PROVIDER,
        "k8s-provider",
        {"kubeconfig": JsonDocument(NamedOutput("kubeconfig"))},
        depends_on=[declared["node_group"]],
    )

    backend_pod_spec = {
        "containers": [
            {
                "name": "backend",
                "image": settings.backend_image,
                "ports": [{"containerPort": settings.backend_port}],
            }
        ]
    }
    workloads: Dict[str, ResourceId] = {"k8s_provider": k8s_provider}
    if "irsa_role" in declared:
        service_account = builder.add_resource(
            K8S_SERVICE_ACCOUNT,
            settings.backend_service_account,
            {
                "metadata": {
                    "name": settings.backend_service_account,
                    "namespace": settings.namespace,
                    "annotations": {"eks.amazonaws.com/role-arn": ref(declared["irsa_role"], "arn")},
                },
                "provider": ref(k8s_provider),
            },
        )
        backend_pod_spec["serviceAccountName"] = ref(service_account, "metadata.name")
        workloads["service_account"] = service_account

    backend_deployment = builder.add_resource(
        K8S_DEPLOYMENT,
        "backend-deployment",
        _deployment("backend", settings.namespace, backend_pod_spec, ref(k8s_provider)),
    )
    backend_service = builder.add_resource(
        K8S_SERVICE,
        "backend-service",
        _service(
            "backend-service",
            settings.namespace,
            "ClusterIP",
            ref(backend_deployment, "spec.template.metadata.labels"),
            settings.backend_port,
            ref(k8s_provider),
        ),
    )

    api_url = Template(
        "http://${name}.${namespace}.svc.cluster.local:" + str(settings.backend_port),
        {
            "name": ref(backend_service, "metadata.name"),
            "namespace": ref(backend_service, "metadata.namespace"),
        },
    )
    frontend_deployment = builder.add_resource(
        K8S_DEPLOYMENT,
        "frontend-deployment",
        _deployment(
            "frontend",
            settings.namespace,
            {
                "containers": [
                    {
                        "name": "frontend",
                        "image": settings.frontend_image,
                        "ports": [{"containerPort": settings.frontend_port}],
                        "env": [{"name": "API_URL", "value": api_url}],
                    }
                ]
            },
            ref(k8s_provider),
        ),
    )
    frontend_service = builder.add_resource(
        K8S_SERVICE,
        "frontend-service",
        _service(
            "frontend-service",
            settings.namespace,
            settings.frontend_service_type,
            ref(frontend_deployment, "spec.template.metadata.labels"),
            settings.frontend_port,
            ref(k8s_provider),
        ),
    )

    builder.add_output(
        "frontendUrl",
        Template(
            "http://${hostname}",
            {"hostname": ref(frontend_service, "status.loadBalancer.ingress.0.hostname", default=None)},
            fallback="pending...",
        ),
    )
    workloads.update(
        {
            "backend_deployment": backend_deployment,
            "backend_service": backend_service,
            "frontend_deployment": frontend_deployment,
            "frontend_service": frontend_service,
        }
    )
    return workloads


def _deployment(app: str, namespace: str, pod_spec: Dict[str, object], provider: object) -> Dict[str, object]:
    return {
        "metadata": {"namespace": namespace},
        "spec": {
            "selector": {"matchLabels": {"app": app}},
            "replicas": 2,
            "template": {"metadata": {"labels": {"app": app}}, "spec": pod_spec},
        },
        "provider": provider,
    }


def _service(
    name: str,
    namespace: str,
    service_type: str,
    selector: object,
    port: int,
    provider: object,
) -> Dict[str, object]:
    return {
        "metadata": {"name": name, "namespace": namespace},
        "spec": {
            "type": service_type,
            "selector": selector,
            "ports": [{"port": port, "targetPort": port}],
        },
        "provider": provider,
    }
