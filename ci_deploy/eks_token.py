"""
Bearer token generation for EKS clusters.

The token is a presigned STS GetCallerIdentity URL bound to the cluster name
through the x-k8s-aws-id header, which the EKS authenticator verifies.
"""
import base64
import logging
from typing import Optional

import boto3
from botocore.signers import RequestSigner

logger = logging.getLogger(__name__)

TOKEN_PREFIX = "k8s-aws-v1."
CLUSTER_ID_HEADER = "x-k8s-aws-id"
TOKEN_EXPIRES_SECS = 60


def generate_token(cluster_name: str, region: str, session: Optional[boto3.session.Session] = None) -> str:
    """
    Generate a short-lived bearer token for an EKS cluster.

    Args:
        cluster_name: EKS cluster the token is scoped to
        region: AWS region of the STS endpoint
        session: boto3 session holding the caller's credentials

    Returns:
        Token string accepted by the cluster API server
    """
    session = session or boto3.session.Session()
    credentials = session.get_credentials()
    if credentials is None:
        raise ValueError("No AWS credentials available to sign the cluster token")

    sts = session.client("sts", region_name=region)
    signer = RequestSigner(
        sts.meta.service_model.service_id,
        region,
        "sts",
        "v4",
        credentials,
        session.events,
    )
    request = {
        "method": "GET",
        "url": f"https://sts.{region}.amazonaws.com/?Action=GetCallerIdentity&Version=2011-06-15",
        "body": {},
        "headers": {CLUSTER_ID_HEADER: cluster_name},
        "context": {},
    }
    presigned_url = signer.generate_presigned_url(
        request,
        region_name=region,
        expires_in=TOKEN_EXPIRES_SECS,
        operation_name="",
    )
    encoded = base64.urlsafe_b64encode(presigned_url.encode("utf-8")).decode("utf-8")
    logger.debug(f"Generated token for cluster {cluster_name}")
    return TOKEN_PREFIX + encoded.rstrip("=")
