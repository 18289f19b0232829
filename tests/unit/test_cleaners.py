"""Unit tests for the pre-destroy cleaners."""
import json
from unittest.mock import MagicMock

from botocore.exceptions import ClientError

from conftest import failed, ok
from infra_reconcile.cleaners.base import StepStatus
from infra_reconcile.cleaners.ecr import ECRImageCleaner
from infra_reconcile.cleaners.eks import NodegroupCleaner
from infra_reconcile.cleaners.kubernetes import KubernetesCleaner
from infra_reconcile.cleaners.load_balancer import LoadBalancerCleaner
from infra_reconcile.orchestrator.results import record_step_results
from infra_reconcile.state.models import ReconciliationOutcome, ResourceKind


def manifest(tag):
    return json.dumps({
        "schemaVersion": 2,
        "mediaType": "application/vnd.docker.distribution.manifest.v2+json",
        "config": {
            "digest": "sha256:" + tag * 64,
            "size": 1,
            "mediaType": "application/vnd.docker.container.image.v1+json",
        },
        "layers": [],
    })


def test_ecr_cleaner_deletes_all_images(session, no_retry):
    ecr = session.client("ecr")
    ecr.create_repository(repositoryName="neo4j-basic-demo")
    ecr.put_image(repositoryName="neo4j-basic-demo", imageManifest=manifest("a"), imageTag="dev-latest")
    ecr.put_image(repositoryName="neo4j-basic-demo", imageManifest=manifest("b"), imageTag="0123abcd-1700000000")

    results = ECRImageCleaner(session, ["neo4j-basic-demo", "neo4j-social-network"], retry=no_retry).cleanup()

    assert ecr.list_images(repositoryName="neo4j-basic-demo")["imageIds"] == []
    statuses = {(r.ref.external_id, r.action): r.status for r in results}
    assert statuses[("neo4j-basic-demo", "batch_delete_image")] == StepStatus.DONE
    assert statuses[("neo4j-social-network", "describe_repositories")] == StepStatus.ABSENT


def test_ecr_outcome_lists_deleted_images_not_repositories(session, no_retry):
    ecr = session.client("ecr")
    ecr.create_repository(repositoryName="neo4j-basic-demo")
    ecr.put_image(repositoryName="neo4j-basic-demo", imageManifest=manifest("a"), imageTag="dev-latest")
    outcome = ReconciliationOutcome(operation="destroy", environment="dev")

    record_step_results(outcome, "ecr_images", ECRImageCleaner(session, ["neo4j-basic-demo"], retry=no_retry).cleanup())

    assert [ref.resource_type for ref in outcome.destroyed] == [ResourceKind.ECR_IMAGE]
    assert outcome.destroyed[0].external_id.startswith("neo4j-basic-demo@sha256:")
    assert ecr.describe_repositories(repositoryNames=["neo4j-basic-demo"])["repositories"]


def test_nodegroups_deleted_one_at_a_time(no_retry):
    eks = MagicMock()
    eks.describe_cluster.return_value = {"cluster": {"name": "neo4j-demo-cluster"}}
    eks.get_paginator.return_value.paginate.return_value = [{"nodegroups": ["ng-a", "ng-b"]}]
    boto_session = MagicMock()
    boto_session.client.return_value = eks

    results = NodegroupCleaner(boto_session, "neo4j-demo-cluster", retry=no_retry, timeout=60, poll_interval=30).cleanup()

    assert [r.ref.external_id for r in results] == ["neo4j-demo-cluster/ng-a", "neo4j-demo-cluster/ng-b"]
    assert eks.delete_nodegroup.call_count == 2
    eks.get_waiter.assert_called_with("nodegroup_deleted")
    eks.get_waiter.return_value.wait.assert_any_call(
        clusterName="neo4j-demo-cluster", nodegroupName="ng-a", WaiterConfig={"Delay": 30, "MaxAttempts": 2}
    )


def test_missing_cluster_skips_nodegroups(no_retry):
    eks = MagicMock()
    eks.describe_cluster.side_effect = ClientError(
        {"Error": {"Code": "ResourceNotFoundException", "Message": "No cluster found"}}, "DescribeCluster"
    )
    boto_session = MagicMock()
    boto_session.client.return_value = eks

    results = NodegroupCleaner(boto_session, "neo4j-demo-cluster", retry=no_retry).cleanup()

    assert [r.status for r in results] == [StepStatus.ABSENT]
    eks.delete_nodegroup.assert_not_called()


KUBECONFIG = "/tmp/reconcile-kubeconfig"


def kubectl_runner(namespaces, ingresses, reachable=True, kubeconfig_result=None):
    runner = MagicMock()

    def run(args, cwd=None):
        if args[:3] == ["aws", "eks", "update-kubeconfig"]:
            return kubeconfig_result or ok()
        if args[:2] == ["kubectl", "get"] and args[2] == "namespaces":
            return ok(namespaces) if reachable else failed("Unable to connect to the server")
        if args[:3] == ["kubectl", "get", "ingress"]:
            return ok(ingresses)
        return ok()

    runner.run.side_effect = run
    return runner


def kubectl_calls(runner):
    return [call.args[0] for call in runner.run.call_args_list if call.args[0][0] == "kubectl"]


def test_kubernetes_cleaner_deletes_ingresses_then_demo_namespaces():
    runner = kubectl_runner("default kube-system neo4j-basic-demo movie-app", "neo4j-basic-demo web\n")
    sleeps = []

    results = KubernetesCleaner(
        "neo4j-demo-cluster", "us-west-2", runner=runner, sleep=sleeps.append, kubeconfig=KUBECONFIG
    ).cleanup()

    deletes = [args for args in kubectl_calls(runner) if args[1] == "delete"]
    assert deletes == [
        ["kubectl", "delete", "ingress", "-n", "neo4j-basic-demo", "web", "--wait=false", "--ignore-not-found=true",
         "--kubeconfig", KUBECONFIG],
        ["kubectl", "delete", "namespace", "neo4j-basic-demo", "--wait=false", "--ignore-not-found=true",
         "--kubeconfig", KUBECONFIG],
        ["kubectl", "delete", "namespace", "movie-app", "--wait=false", "--ignore-not-found=true",
         "--kubeconfig", KUBECONFIG],
    ]
    assert all(r.status == StepStatus.DONE for r in results)
    assert sleeps == [30.0]


def test_kubectl_is_pinned_to_the_kubeconfig_it_wrote():
    runner = kubectl_runner("neo4j-basic-demo", "")

    KubernetesCleaner("neo4j-demo-cluster", "us-west-2", runner=runner, sleep=lambda _: None).cleanup()

    update = runner.run.call_args_list[0].args[0]
    assert update[:3] == ["aws", "eks", "update-kubeconfig"]
    written = update[update.index("--kubeconfig") + 1]
    calls = kubectl_calls(runner)
    assert calls
    assert all(args[-2:] == ["--kubeconfig", written] for args in calls)


def test_missing_cluster_runs_no_kubectl():
    runner = kubectl_runner(
        "default neo4j-prod-db", "",
        kubeconfig_result=failed("An error occurred (ResourceNotFoundException): No cluster found for name"),
    )

    results = KubernetesCleaner("neo4j-demo-cluster", "us-west-2", runner=runner, kubeconfig=KUBECONFIG).cleanup()

    assert [(r.action, r.status) for r in results] == [("update_kubeconfig", StepStatus.ABSENT)]
    assert kubectl_calls(runner) == []


def test_failed_kubeconfig_update_fails_the_step_without_kubectl():
    runner = kubectl_runner(
        "default neo4j-prod-db kube-system", "",
        kubeconfig_result=failed("An error occurred (AccessDeniedException) when calling DescribeCluster"),
    )

    results = KubernetesCleaner("neo4j-demo-cluster", "us-west-2", runner=runner, kubeconfig=KUBECONFIG).cleanup()

    assert [(r.action, r.status) for r in results] == [("update_kubeconfig", StepStatus.FAILED)]
    assert kubectl_calls(runner) == []


def test_unreachable_cluster_is_skipped():
    runner = kubectl_runner("", "", reachable=False)

    results = KubernetesCleaner(
        "neo4j-demo-cluster", "us-west-2", runner=runner, sleep=lambda _: None, kubeconfig=KUBECONFIG
    ).cleanup()

    assert [r.status for r in results] == [StepStatus.ABSENT]
    assert not any(args[1] == "delete" for args in kubectl_calls(runner))


def test_load_balancer_cleaner_selects_by_name_and_cluster_tag(no_retry):
    elbv2 = MagicMock()
    pages = {
        "describe_load_balancers": [{"LoadBalancers": [
            {"LoadBalancerName": "neo4j-demos-alb", "LoadBalancerArn": "arn:lb/by-name"},
            {"LoadBalancerName": "k8s-neo4jbas-ingress", "LoadBalancerArn": "arn:lb/by-tag"},
            {"LoadBalancerName": "unrelated", "LoadBalancerArn": "arn:lb/other"},
        ]}],
        "describe_target_groups": [{"TargetGroups": [
            {"TargetGroupName": "neo4j-demos-tg", "TargetGroupArn": "arn:tg/by-name"},
            {"TargetGroupName": "other-tg", "TargetGroupArn": "arn:tg/other"},
        ]}],
    }
    elbv2.get_paginator.side_effect = lambda op: MagicMock(paginate=MagicMock(return_value=pages[op]))
    elbv2.describe_tags.return_value = {"TagDescriptions": [
        {"ResourceArn": "arn:lb/by-tag", "Tags": [{"Key": "elbv2.k8s.aws/cluster", "Value": "neo4j-demo-cluster"}]},
        {"ResourceArn": "arn:lb/other", "Tags": []},
        {"ResourceArn": "arn:tg/other", "Tags": []},
    ]}
    elbv2.describe_listeners.return_value = {"Listeners": [{"ListenerArn": "arn:listener/1"}]}
    boto_session = MagicMock()
    boto_session.client.return_value = elbv2

    LoadBalancerCleaner(boto_session, ["neo4j-demos"], cluster_name="neo4j-demo-cluster", retry=no_retry).cleanup()

    deleted = [call.kwargs["LoadBalancerArn"] for call in elbv2.delete_load_balancer.call_args_list]
    assert deleted == ["arn:lb/by-name", "arn:lb/by-tag"]
    assert elbv2.delete_listener.call_count == 2
    elbv2.delete_target_group.assert_called_once_with(TargetGroupArn="arn:tg/by-name")

    order = [name for name, _, _ in elbv2.mock_calls if name.startswith("delete_")]
    assert order.index("delete_listener") < order.index("delete_load_balancer")
    assert order[-1] == "delete_target_group"
