"""Control rule tables for SOC2, ISO 27001 and NIST 800-53.

Each ``ControlRule`` lists the (category, signal types) pairs that evidence
the control. Table order is output order.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..signals.models import SignalCategory
from .models import Framework

AUTH = SignalCategory.AUTH
ENCRYPTION = SignalCategory.ENCRYPTION
LOGGING = SignalCategory.LOGGING
ACCESS_CONTROL = SignalCategory.ACCESS_CONTROL
CICD = SignalCategory.CICD
SECRETS = SignalCategory.SECRETS

AUTH_TYPES = ("jwt", "oauth", "oidc", "session", "mfa", "passkey", "saml", "basic_auth")
MFA_TYPES = ("mfa", "passkey")
ACCESS_CONTROL_TYPES = ("rbac", "permissions", "middleware", "policy", "acl")
AT_REST_TYPES = ("at_rest", "hashing", "key_management")
ENCRYPTION_TYPES = ("at_rest", "in_transit", "hashing", "key_management")
LOGGING_TYPES = ("structured", "audit", "security", "access")
AUDIT_TYPES = ("audit", "security")
CICD_TYPES = ("github_actions", "gitlab_ci", "jenkins", "circleci", "travis", "azure_devops")
SECRET_TYPES = ("private_key", "api_key", "password", "hardcoded_secret", "token", "credential_url")


@dataclass(frozen=True)
class ControlRule:
    """How one control is evidenced.

    Attributes:
        control_id: Framework control identifier
        title: Human-readable control name
        evidence: (category, types) pairs whose signals contribute
        recommendation: Remediation when the control fails
        verification: Follow-up when the control is evidenced
        inverse: Contributing signals are violations (secret hygiene);
            the control passes when none are found
    """

    control_id: str
    title: str
    evidence: tuple[tuple[SignalCategory, tuple[str, ...]], ...]
    recommendation: str
    verification: str
    inverse: bool = False

    @property
    def primary_category(self) -> SignalCategory:
        return self.evidence[0][0]


_AUTHENTICATION_REC = (
    "Implement user authentication (e.g. JWT, OAuth/OIDC or session-based login) "
    "and require it on every non-public endpoint"
)
_MFA_REC = "Implement multi-factor authentication (TOTP, WebAuthn/passkeys) and enforce it for privileged users"
_ACCESS_REC = "Implement role-based access control and enforce authorization checks on every protected resource"
_AT_REST_REC = (
    "Implement encryption at rest for sensitive data (AES-256 with managed keys) "
    "and hash passwords with bcrypt, argon2 or PBKDF2"
)
_IN_TRANSIT_REC = "Implement TLS 1.2+ for all network traffic and enable HSTS"
_CRYPTO_REC = "Implement cryptographic controls for data at rest and in transit using vetted libraries"
_LOGGING_REC = "Implement structured logging that captures authentication, authorization and administrative events"
_AUDIT_REC = "Implement an audit trail recording security-relevant user and administrative actions"
_CICD_REC = (
    "Implement a CI/CD pipeline with security scanning (SAST, secret scanning and "
    "dependency scanning) so every change is reviewed and tested"
)
_SECRETS_REC = "Remove hardcoded credentials, rotate them, and load secrets from environment variables or a secret manager"

SOC2_RULES: tuple[ControlRule, ...] = (
    ControlRule(
        "CC6.1",
        "Logical Access - Authentication",
        ((AUTH, AUTH_TYPES),),
        _AUTHENTICATION_REC,
        "Document the authentication mechanism and verify it protects every endpoint",
    ),
    ControlRule(
        "CC6.2",
        "Multi-Factor Authentication",
        ((AUTH, MFA_TYPES + ("session",)),),
        _MFA_REC,
        "Verify MFA is enforced for all privileged users and admin access",
    ),
    ControlRule(
        "CC6.3",
        "Authorization and Access",
        ((ACCESS_CONTROL, ACCESS_CONTROL_TYPES),),
        _ACCESS_REC,
        "Document the access control matrix and verify least privilege is enforced",
    ),
    ControlRule(
        "CC6.6",
        "Encryption of Data at Rest",
        ((ENCRYPTION, AT_REST_TYPES),),
        _AT_REST_REC,
        "Document key management and verify AES-256 or stronger with key rotation",
    ),
    ControlRule(
        "CC6.7",
        "Encryption of Data in Transit",
        ((ENCRYPTION, ("in_transit",)),),
        _IN_TRANSIT_REC,
        "Verify TLS 1.2+ is enforced and weak ciphers are disabled",
    ),
    ControlRule(
        "CC7.2",
        "Logging and Monitoring",
        ((LOGGING, LOGGING_TYPES),),
        _LOGGING_REC,
        "Verify logging captures all security-relevant events and is monitored",
    ),
    ControlRule(
        "CC7.3",
        "Audit Logging",
        ((LOGGING, AUDIT_TYPES),),
        _AUDIT_REC,
        "Document log retention and ensure audit logs are protected from tampering",
    ),
    ControlRule(
        "CC8.1",
        "Change Management Process",
        ((CICD, CICD_TYPES),),
        _CICD_REC,
        "Formalize change control with approval gates and required checks",
    ),
)

ISO27001_RULES: tuple[ControlRule, ...] = (
    ControlRule(
        "A.9.2.1",
        "User registration and de-registration",
        ((AUTH, AUTH_TYPES),),
        _AUTHENTICATION_REC,
        "Document user provisioning and de-provisioning procedures",
    ),
    ControlRule(
        "A.9.4.1",
        "Information access restriction",
        ((ACCESS_CONTROL, ACCESS_CONTROL_TYPES),),
        _ACCESS_REC,
        "Define and document an access control policy aligned with business requirements",
    ),
    ControlRule(
        "A.9.4.3",
        "Password management system",
        ((SECRETS, SECRET_TYPES),),
        _SECRETS_REC,
        "Keep secret scanning in CI to prevent credentials from being committed",
        inverse=True,
    ),
    ControlRule(
        "A.10.1.1",
        "Cryptographic controls",
        ((ENCRYPTION, ENCRYPTION_TYPES),),
        _CRYPTO_REC,
        "Document the cryptographic policy and verify algorithms meet current standards",
    ),
    ControlRule(
        "A.12.4.1",
        "Event logging",
        ((LOGGING, LOGGING_TYPES),),
        _LOGGING_REC,
        "Document log retention and ensure event logs are protected",
    ),
    ControlRule(
        "A.14.2.2",
        "System change control procedures",
        ((CICD, CICD_TYPES),),
        _CICD_REC,
        "Document change control including authorization, documentation and testing",
    ),
)

NIST80053_RULES: tuple[ControlRule, ...] = (
    ControlRule(
        "IA-2",
        "Identification and Authentication (Organizational Users)",
        ((AUTH, AUTH_TYPES),),
        _AUTHENTICATION_REC,
        "Document how users are uniquely identified and authenticated",
    ),
    ControlRule(
        "IA-2(1)",
        "Multi-Factor Authentication",
        ((AUTH, MFA_TYPES),),
        _MFA_REC,
        "Document the MFA enforcement policy for all users",
    ),
    ControlRule(
        "IA-5(7)",
        "No Embedded Unencrypted Static Authenticators",
        ((SECRETS, SECRET_TYPES),),
        _SECRETS_REC,
        "Keep secret scanning in CI to prevent embedded authenticators",
        inverse=True,
    ),
    ControlRule(
        "AC-3",
        "Access Enforcement",
        ((ACCESS_CONTROL, ACCESS_CONTROL_TYPES),),
        _ACCESS_REC,
        "Document approved authorizations and verify enforcement at all access points",
    ),
    ControlRule(
        "SC-8",
        "Transmission Confidentiality and Integrity",
        ((ENCRYPTION, ("in_transit",)),),
        _IN_TRANSIT_REC,
        "Verify TLS 1.2+ is enforced for all transmitted information",
    ),
    ControlRule(
        "SC-13",
        "Cryptographic Protection",
        ((ENCRYPTION, ENCRYPTION_TYPES),),
        _CRYPTO_REC,
        "Verify cryptographic modules are FIPS 140-2/3 validated where required",
    ),
    ControlRule(
        "SC-28",
        "Protection of Information at Rest",
        ((ENCRYPTION, ("at_rest", "key_management")),),
        _AT_REST_REC,
        "Document key generation, storage, rotation and destruction procedures",
    ),
    ControlRule(
        "AU-2",
        "Event Logging",
        ((LOGGING, LOGGING_TYPES),),
        _LOGGING_REC,
        "Define and document the list of auditable events",
    ),
    ControlRule(
        "CM-3",
        "Configuration Change Control",
        ((CICD, CICD_TYPES),),
        _CICD_REC,
        "Document how changes are authorized, documented and tested",
    ),
)

RULES: dict[Framework, tuple[ControlRule, ...]] = {
    Framework.SOC2: SOC2_RULES,
    Framework.ISO27001: ISO27001_RULES,
    Framework.NIST80053: NIST80053_RULES,
}
