"""Custom domains for REST gateways.

Issuing a certificate needs a human to add DNS validation records, so the
certificate flow is a small state machine that can stop at
``AWAITING_CONFIRMATION`` and be resumed later with ``confirm()``.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from botocore.exceptions import ClientError

from nimbus.config.defaults import CERTIFICATE_REGION
from nimbus.lib.aws import is_conflict, is_not_found, provider_error
from nimbus.lib.errors import (
    CertificateValidationError,
    DeploymentError,
    PollTimeoutError,
)
from nimbus.lib.logging_config import get_logger
from nimbus.resources.base import ResourceContext

logger = get_logger(__name__)


class SagaState(str, Enum):
    """Progress of a certificate request."""

    NONE = "NONE"
    REQUESTED = "REQUESTED"
    PENDING_VALIDATION = "PENDING_VALIDATION"
    AWAITING_CONFIRMATION = "AWAITING_CONFIRMATION"
    ISSUED = "ISSUED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"


@dataclass(frozen=True)
class ValidationRecord:
    """DNS record the domain owner must publish."""

    domain: str
    type: str
    name: str
    value: str


@dataclass(frozen=True)
class DomainTarget:
    """Where the custom domain's DNS record must point."""

    domain: str
    regional_domain_name: str
    hosted_zone_id: str | None = None


def _log_records(records: list[ValidationRecord]) -> None:
    for record in records:
        logger.info(
            f"Add DNS record for {record.domain}: {record.type} {record.name} {record.value}"
        )


class CertificateSaga:
    """Find or request a DNS-validated certificate and wait for issuance.

    ``run()`` drives the whole flow, calling ``confirm_callback`` while the
    owner publishes the validation records. Automation that cannot block can
    call ``start()``, publish ``records`` itself, and call ``confirm()``.
    """

    def __init__(
        self,
        domain: str,
        context: ResourceContext,
        *,
        display: Callable[[list[ValidationRecord]], None] | None = None,
        confirm_callback: Callable[[list[ValidationRecord]], None] | None = None,
    ) -> None:
        self.domain = domain
        self.context = context
        self.display = display or _log_records
        self.confirm_callback = confirm_callback
        self.state = SagaState.NONE
        self.certificate_arn: str | None = None
        self.records: list[ValidationRecord] = []

    @property
    def client(self) -> Any:
        """ACM client; certificates always live in the certificate region."""
        return self.context.client("acm", CERTIFICATE_REGION)

    def start(self) -> SagaState:
        """Advance until the certificate is issued or needs confirmation.

        Returns:
            ``ISSUED`` or ``AWAITING_CONFIRMATION``

        Raises:
            CertificateValidationError: If the certificate already failed
            PollTimeoutError: If validation records never appear
        """
        try:
            existing = self._find_certificate()
            if existing:
                self.certificate_arn = existing
                certificate = self._describe()
                status = certificate.get("Status")
                logger.info(f"Found certificate {existing} ({status})")
                if status == "ISSUED":
                    self.state = SagaState.ISSUED
                    return self.state
                if status == "FAILED":
                    self.state = SagaState.FAILED
                    raise CertificateValidationError(
                        self.domain, certificate.get("FailureReason")
                    )
            else:
                logger.info(f"Requesting certificate for {self.domain}")
                response = self.client.request_certificate(
                    DomainName=self.domain, ValidationMethod="DNS"
                )
                self.certificate_arn = response["CertificateArn"]
                self.state = SagaState.REQUESTED
        except ClientError as e:
            raise provider_error(f"certificate {self.domain}", e) from e

        try:
            self.records = self.context.poll(
                self._validation_records,
                "validation_records",
                f"certificate {self.domain} validation records",
            )
        except PollTimeoutError:
            self.state = SagaState.TIMED_OUT
            raise
        self.state = SagaState.PENDING_VALIDATION
        self.display(self.records)
        self.state = SagaState.AWAITING_CONFIRMATION
        return self.state

    def confirm(self) -> str:
        """Wait for issuance after the validation records were published.

        Returns:
            ARN of the issued certificate

        Raises:
            CertificateValidationError: If the provider rejects validation
            PollTimeoutError: If issuance exceeds its attempt ceiling
        """
        if self.state is SagaState.ISSUED and self.certificate_arn:
            return self.certificate_arn
        if self.state is not SagaState.AWAITING_CONFIRMATION:
            raise DeploymentError(
                operation=f"certificate {self.domain}",
                message=f"Cannot confirm certificate in state {self.state.value}",
            )

        logger.info(f"Waiting for certificate {self.domain} to be issued")
        try:
            self.context.poll(
                self._issued, "certificate_issued", f"certificate {self.domain} issuance"
            )
        except PollTimeoutError:
            self.state = SagaState.TIMED_OUT
            raise
        self.state = SagaState.ISSUED
        return self.certificate_arn  # type: ignore[return-value]

    def run(self) -> str:
        """Drive the saga end to end, blocking on ``confirm_callback``."""
        if self.start() is SagaState.ISSUED:
            return self.certificate_arn  # type: ignore[return-value]
        if self.confirm_callback is not None:
            self.confirm_callback(self.records)
        return self.confirm()

    def _find_certificate(self) -> str | None:
        kwargs: dict[str, Any] = {}
        while True:
            response = self.client.list_certificates(**kwargs)
            for summary in response.get("CertificateSummaryList", []):
                if summary.get("DomainName") == self.domain:
                    return summary["CertificateArn"]
            token = response.get("NextToken")
            if not token:
                return None
            kwargs["NextToken"] = token

    def _describe(self) -> dict[str, Any]:
        response = self.client.describe_certificate(CertificateArn=self.certificate_arn)
        return response.get("Certificate", {})

    def _validation_records(self) -> list[ValidationRecord] | None:
        try:
            certificate = self._describe()
        except ClientError as e:
            raise provider_error(f"certificate {self.domain}", e) from e
        records = [
            ValidationRecord(
                domain=option.get("DomainName", self.domain),
                type=option["ResourceRecord"]["Type"],
                name=option["ResourceRecord"]["Name"],
                value=option["ResourceRecord"]["Value"],
            )
            for option in certificate.get("DomainValidationOptions", [])
            if option.get("ResourceRecord")
        ]
        return records or None

    def _issued(self) -> bool | None:
        try:
            certificate = self._describe()
        except ClientError as e:
            raise provider_error(f"certificate {self.domain}", e) from e
        status = certificate.get("Status")
        if status == "ISSUED":
            return True
        if status == "FAILED":
            self.state = SagaState.FAILED
            raise CertificateValidationError(
                self.domain, certificate.get("FailureReason")
            )
        return None


def remove_api_mappings(
    client: Any, api_id: str, *, keep_domain: str | None = None
) -> None:
    """Delete base path mappings pointing at an API on every domain.

    Failures are logged as warnings; a stale mapping never blocks a deploy
    or destroy.
    """
    try:
        domains = client.get_domain_names().get("items", [])
    except ClientError as e:
        logger.warning(f"Could not list custom domains: {e}")
        return

    for domain in domains:
        name = domain.get("domainName")
        if not name or name == keep_domain:
            continue
        try:
            mappings = client.get_base_path_mappings(domainName=name).get("items", [])
            for mapping in mappings:
                if mapping.get("restApiId") != api_id:
                    continue
                client.delete_base_path_mapping(
                    domainName=name, basePath=mapping.get("basePath") or "(none)"
                )
                logger.info(f"Removed base path mapping on {name}")
        except ClientError as e:
            if not is_not_found(e):
                logger.warning(f"Could not clean mappings on {name}: {e}")


class CustomDomain:
    """Bind a gateway stage to a custom domain name."""

    def __init__(
        self, domain: str, context: ResourceContext, saga: CertificateSaga
    ) -> None:
        self.domain = domain
        self.context = context
        self.saga = saga
        self.target: DomainTarget | None = None

    def bind(self, api_id: str, stage: str) -> DomainTarget:
        """Issue the certificate, create the domain and map it to the stage.

        Returns:
            DNS target the domain must point at
        """
        client = self.context.client("apigateway")
        remove_api_mappings(client, api_id, keep_domain=self.domain)
        certificate_arn = self.saga.run()

        try:
            try:
                client.get_domain_name(domainName=self.domain)
                logger.info(f"Domain {self.domain} already exists")
            except ClientError as e:
                if not is_not_found(e):
                    raise
                logger.info(f"Creating domain {self.domain}")
                client.create_domain_name(
                    domainName=self.domain,
                    regionalCertificateArn=certificate_arn,
                    endpointConfiguration={"types": ["REGIONAL"]},
                )

            try:
                client.create_base_path_mapping(
                    domainName=self.domain, restApiId=api_id, stage=stage, basePath=""
                )
            except ClientError as e:
                if not is_conflict(e):
                    raise
                logger.debug(f"Base path mapping on {self.domain} already exists")

            response = client.get_domain_name(domainName=self.domain)
        except ClientError as e:
            raise provider_error(f"domain {self.domain}", e) from e

        self.target = DomainTarget(
            domain=self.domain,
            regional_domain_name=response.get("regionalDomainName", ""),
            hosted_zone_id=response.get("regionalHostedZoneId"),
        )
        logger.info(
            f"Point {self.domain} at {self.target.regional_domain_name} (CNAME or alias)"
        )
        return self.target
