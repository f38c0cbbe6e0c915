from __future__ import annotations

import base64
from unittest.mock import MagicMock, patch

import pytest
import requests
from botocore.exceptions import ClientError

from ci_deploy.cluster_auth import (
    DoksAuthenticator,
    EksAuthenticator,
    KubeconfigAuthenticator,
    authenticator_for,
)
from ci_deploy.config import Settings
from ci_deploy.errors import AuthenticationError

CA_PEM = b"-----BEGIN CERTIFICATE-----\nMIIBfake\n-----END CERTIFICATE-----\n"

KUBECONFIG = """
apiVersion: v1
kind: Config
clusters:
- name: doks
  cluster:
    server: https://doks.example.com
    certificate-authority-data: {ca}
users:
- name: doks-admin
  user:
    token: do-token
contexts:
- name: doks
  context:
    cluster: doks
    user: doks-admin
current-context: doks
""".format(ca=base64.b64encode(CA_PEM).decode("ascii"))


def _eks_session(cluster: dict | None = None, error: Exception | None = None) -> MagicMock:
    eks = MagicMock()
    if error is not None:
        eks.describe_cluster.side_effect = error
    else:
        eks.describe_cluster.return_value = {"cluster": cluster}
    session = MagicMock()
    session.client.return_value = eks
    return session


def _cluster_description(ca_data: str | None = None) -> dict:
    return {
        "name": "hello-eks",
        "endpoint": "https://ABC123.gr7.us-east-1.eks.amazonaws.com",
        "certificateAuthority": {"data": ca_data or base64.b64encode(CA_PEM).decode("ascii")},
    }


def test_eks_authenticator_builds_client() -> None:
    session = _eks_session(_cluster_description())

    with patch("ci_deploy.cluster_auth.generate_token", return_value="k8s-aws-v1.abc") as token:
        cluster = EksAuthenticator("hello-eks", "us-east-1", session=session).authenticate()

    session.client.assert_called_once_with("eks", region_name="us-east-1")
    session.client.return_value.describe_cluster.assert_called_once_with(name="hello-eks")
    token.assert_called_once_with("hello-eks", "us-east-1", session)
    assert cluster.host == "https://ABC123.gr7.us-east-1.eks.amazonaws.com"
    assert cluster.token == "k8s-aws-v1.abc"
    assert cluster.ca_data == CA_PEM
    assert cluster.api_client.configuration.host == cluster.host
    assert "k8s-aws-v1.abc" in cluster.api_client.configuration.api_key["authorization"]
    cluster.close()


def test_eks_authenticator_describe_failure_is_fatal() -> None:
    error = ClientError({"Error": {"Code": "ResourceNotFoundException", "Message": "No cluster"}}, "DescribeCluster")
    session = _eks_session(error=error)

    with patch("ci_deploy.cluster_auth.generate_token") as token:
        with pytest.raises(AuthenticationError, match="DescribeCluster"):
            EksAuthenticator("hello-eks", "us-east-1", session=session).authenticate()

    token.assert_not_called()
    assert session.client.return_value.describe_cluster.call_count == 1


def test_eks_authenticator_token_failure_is_fatal() -> None:
    session = _eks_session(_cluster_description())

    with patch("ci_deploy.cluster_auth.generate_token", side_effect=ValueError("No AWS credentials")):
        with pytest.raises(AuthenticationError, match="token"):
            EksAuthenticator("hello-eks", "us-east-1", session=session).authenticate()


def test_eks_authenticator_rejects_bad_certificate_data() -> None:
    session = _eks_session(_cluster_description(ca_data="not base64!!"))

    with patch("ci_deploy.cluster_auth.generate_token", return_value="k8s-aws-v1.abc"):
        with pytest.raises(AuthenticationError, match="certificate authority"):
            EksAuthenticator("hello-eks", "us-east-1", session=session).authenticate()


@pytest.mark.parametrize("missing", ["name", "endpoint"])
def test_eks_authenticator_rejects_incomplete_description(missing) -> None:
    description = _cluster_description()
    del description[missing]
    session = _eks_session(description)

    with patch("ci_deploy.cluster_auth.generate_token") as token:
        with pytest.raises(AuthenticationError, match=f"missing '{missing}'"):
            EksAuthenticator("hello-eks", "us-east-1", session=session).authenticate()

    token.assert_not_called()


def test_kubeconfig_authenticator_loads_blob() -> None:
    cluster = KubeconfigAuthenticator(KUBECONFIG).authenticate()

    assert cluster.host == "https://doks.example.com"
    assert "do-token" in cluster.api_client.configuration.api_key["authorization"]
    cluster.close()


@pytest.mark.parametrize("blob", [None, "", "   \n"])
def test_kubeconfig_authenticator_rejects_empty_blob(blob) -> None:
    with pytest.raises(AuthenticationError, match="empty"):
        KubeconfigAuthenticator(blob).authenticate()


@pytest.mark.parametrize(
    "blob",
    [
        "clusters: [unclosed",
        "- just\n- a list\n",
        "apiVersion: v1\nkind: Config\n",
    ],
)
def test_kubeconfig_authenticator_rejects_malformed_blob(blob) -> None:
    with pytest.raises(AuthenticationError):
        KubeconfigAuthenticator(blob).authenticate()


def test_doks_authenticator_fetches_kubeconfig() -> None:
    response = MagicMock(status_code=200, text=KUBECONFIG)

    with patch("ci_deploy.cluster_auth.requests.get", return_value=response) as get:
        cluster = DoksAuthenticator("c-123", "do-api-token", timeout=5).authenticate()

    url = get.call_args.args[0]
    assert url == "https://api.digitalocean.com/v2/kubernetes/clusters/c-123/kubeconfig"
    assert get.call_args.kwargs["headers"]["Authorization"] == "Bearer do-api-token"
    assert get.call_args.kwargs["timeout"] == 5
    assert cluster.host == "https://doks.example.com"
    cluster.close()


def test_doks_authenticator_reports_api_errors() -> None:
    response = MagicMock(status_code=404, text='{"id":"not_found"}')

    with patch("ci_deploy.cluster_auth.requests.get", return_value=response):
        with pytest.raises(AuthenticationError, match="404"):
            DoksAuthenticator("c-123", "do-api-token").authenticate()

    with patch("ci_deploy.cluster_auth.requests.get", side_effect=requests.ConnectionError("down")):
        with pytest.raises(AuthenticationError, match="c-123"):
            DoksAuthenticator("c-123", "do-api-token").authenticate()


def test_authenticator_for_selects_variant(tmp_path) -> None:
    eks = authenticator_for(Settings(_env_file=None, TARGET="eks"))
    assert isinstance(eks, EksAuthenticator)
    assert (eks.cluster_name, eks.region) == ("hello-eks", "us-east-1")

    inline = authenticator_for(Settings(_env_file=None, TARGET="doks", KUBECONFIG_DATA=KUBECONFIG))
    assert isinstance(inline, KubeconfigAuthenticator)

    path = tmp_path / "kubeconfig.yaml"
    path.write_text(KUBECONFIG)
    from_file = authenticator_for(Settings(_env_file=None, TARGET="doks", KUBECONFIG_PATH=str(path)))
    assert isinstance(from_file, KubeconfigAuthenticator)
    assert from_file.blob == KUBECONFIG

    api = authenticator_for(Settings(_env_file=None, TARGET="doks", DOKS_CLUSTER_ID="c-1", DIGITALOCEAN_TOKEN="t"))
    assert isinstance(api, DoksAuthenticator)


def test_authenticator_for_doks_without_credentials(tmp_path) -> None:
    with pytest.raises(AuthenticationError, match="No DOKS credentials"):
        authenticator_for(Settings(_env_file=None, TARGET="doks"))

    with pytest.raises(AuthenticationError, match="Cannot read"):
        authenticator_for(Settings(_env_file=None, TARGET="doks", KUBECONFIG_PATH=str(tmp_path / "missing")))
