"""Pattern battery used by the signal detector.

Each ``SignalPattern`` names one signal type and the line-level rules that
evidence it. Rules are ordered strongest first: a line is attributed to the
first rule it matches, so a canonical API call on a line wins over a weak
lexical hit on the same line.

Confidence policy:
    HIGH   - canonical, unambiguous API call or library entry point
    MEDIUM - indirect evidence: library/package name, config key
    LOW    - weak lexical match (a bare word in a comment would do)
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, Optional

from ..scanning.models import FileEntry
from .models import Confidence, Severity

HIGH = Confidence.HIGH
MEDIUM = Confidence.MEDIUM
LOW = Confidence.LOW


@dataclass(frozen=True)
class PatternRule:
    regex: re.Pattern
    confidence: Confidence


@dataclass(frozen=True)
class SignalPattern:
    """One signal type and the rules that detect it."""

    type: str
    details: str
    rules: tuple[PatternRule, ...]
    # Optional tag extraction, e.g. algorithm names for encryption signals
    attribute_name: Optional[str] = None
    attribute_regex: Optional[re.Pattern] = None


def _rule(pattern: str, confidence: Confidence) -> PatternRule:
    return PatternRule(re.compile(pattern, re.IGNORECASE), confidence)


# ── Authentication ────────────────────────────────────────────────

AUTH_PATTERNS: tuple[SignalPattern, ...] = (
    SignalPattern(
        type="jwt",
        details="JWT (JSON Web Token) authentication implementation detected",
        rules=(
            _rule(r"\bjwt\.(sign|verify|encode|decode)\s*\(", HIGH),
            _rule(r"jsonwebtoken|\bpyjwt\b|\bjose\b|express-jwt|passport-jwt", MEDIUM),
            _rule(r"\bjwt\b.*token|bearer\s+token", LOW),
        ),
    ),
    SignalPattern(
        type="oauth",
        details="OAuth/OAuth2 authentication flow detected",
        rules=(
            _rule(r"passport-oauth2?|authlib|requests_oauthlib|OAuth2Client\s*\(", HIGH),
            _rule(r"client_id.*client_secret|authorization_code|refresh_token", MEDIUM),
            _rule(r"\boauth2?\b", LOW),
        ),
    ),
    SignalPattern(
        type="oidc",
        details="OpenID Connect authentication detected",
        rules=(
            _rule(r"openid-client|oidc-provider|mozilla_django_oidc", HIGH),
            _rule(r"\.well-known/openid-configuration|id_token", MEDIUM),
            _rule(r"\bopenid\b|\boidc\b", LOW),
        ),
    ),
    SignalPattern(
        type="session",
        details="Session-based authentication detected",
        rules=(
            _rule(r"express-session|cookie-session|req\.session\b|session\.regenerate\s*\(|SessionMiddleware", HIGH),
            _rule(r"SESSION_COOKIE_(SECURE|HTTPONLY)|session_secret|SESSION_SECRET", MEDIUM),
            _rule(r"\bsession(storage)?\b", LOW),
        ),
    ),
    SignalPattern(
        type="mfa",
        details="Multi-factor authentication (MFA/2FA) implementation detected",
        rules=(
            _rule(r"speakeasy|otplib|\bpyotp\b|totp\.verify\s*\(|authenticator\.(check|verify)\s*\(", HIGH),
            _rule(r"\btotp\b|two[-_ ]?factor|\b2fa\b|\bmfa_?(enabled|required|verified)\b|mfaVerified", MEDIUM),
            _rule(r"\bmfa\b|authenticator", LOW),
        ),
    ),
    SignalPattern(
        type="passkey",
        details="WebAuthn/passkey authentication detected",
        rules=(
            _rule(r"@simplewebauthn|navigator\.credentials\.(create|get)\s*\(|\bwebauthn\b\.", HIGH),
            _rule(r"\bwebauthn\b|\bfido2\b", MEDIUM),
            _rule(r"\bpasskeys?\b", LOW),
        ),
    ),
    SignalPattern(
        type="saml",
        details="SAML single sign-on detected",
        rules=(
            _rule(r"passport-saml|python3-saml|\bsaml2\.", HIGH),
            _rule(r"\bsaml2?\b|SAMLResponse", MEDIUM),
            _rule(r"\bsso\b", LOW),
        ),
    ),
    SignalPattern(
        type="basic_auth",
        details="HTTP Basic authentication detected",
        rules=(
            _rule(r"express-basic-auth|HTTPBasicAuth\s*\(|HTTPBasic\s*\(", HIGH),
            _rule(r"Authorization:\s*Basic|WWW-Authenticate", MEDIUM),
        ),
    ),
)

# ── Encryption ────────────────────────────────────────────────────

_ALGORITHM_REGEX = re.compile(
    r"\b(aes(?:-?\d{3})?(?:-gcm|-cbc)?|rsa|chacha20|fernet|bcrypt|argon2|scrypt|pbkdf2|sha256|sha512|tls1?\.?[23]?)\b",
    re.IGNORECASE,
)

ENCRYPTION_PATTERNS: tuple[SignalPattern, ...] = (
    SignalPattern(
        type="at_rest",
        details="Data encryption at rest implementation detected",
        rules=(
            _rule(r"crypto\.createCipheriv\s*\(|AES\.new\s*\(|\bFernet\s*\(|AESGCM\s*\(|createCipher\s*\(", HIGH),
            _rule(r"aes-?256|encrypt(ed)?_?(field|column|at_rest)|\.encrypt\s*\(|\bencrypt\s*\(", MEDIUM),
            _rule(r"\bencrypt", LOW),
        ),
        attribute_name="algorithms",
        attribute_regex=_ALGORITHM_REGEX,
    ),
    SignalPattern(
        type="in_transit",
        details="TLS/SSL encryption in transit detected",
        rules=(
            _rule(r"https\.createServer\s*\(|createSecureServer\s*\(|ssl\.create_default_context\s*\(|tls\.connect\s*\(|ListenAndServeTLS", HIGH),
            _rule(r"Strict-Transport-Security|\bhsts\b|SECURE_SSL_REDIRECT|ssl_certificate|sslmode=require|cert.*\.pem", MEDIUM),
            _rule(r"\btls\b|\bssl\b|https://", LOW),
        ),
        attribute_name="algorithms",
        attribute_regex=_ALGORITHM_REGEX,
    ),
    SignalPattern(
        type="key_management",
        details="Key management service usage detected",
        rules=(
            _rule(r"KMSClient\s*\(|boto3\.client\(\s*['\"]kms['\"]|@google-cloud/kms|KeyVaultClient|hvac\.Client\s*\(", HIGH),
            _rule(r"\bkms\b|key_rotation|rotateKey|vault_addr|VAULT_ADDR", MEDIUM),
        ),
    ),
    SignalPattern(
        type="hashing",
        details="Cryptographic hashing detected (password hashing, data integrity)",
        rules=(
            _rule(r"\bbcrypt\b|\bargon2\b|\bpbkdf2\b|\bscrypt\b", HIGH),
            _rule(r"createHash\s*\(|hashlib\.sha(256|512)|\bsha(256|512)\b", MEDIUM),
        ),
        attribute_name="algorithms",
        attribute_regex=_ALGORITHM_REGEX,
    ),
)

# ── Logging ───────────────────────────────────────────────────────

_LOGGING_FRAMEWORK_REGEX = re.compile(
    r"\b(winston|pino|bunyan|structlog|loguru|log4j|logback|morgan|serilog|zap|logrus)\b",
    re.IGNORECASE,
)

LOGGING_PATTERNS: tuple[SignalPattern, ...] = (
    SignalPattern(
        type="audit",
        details="Audit trail logging detected (security events, user actions)",
        rules=(
            _rule(r"audit_?log\w*\s*\(|logAudit\s*\(|auditService\.\w+\s*\(|audit_?trail\w*\s*\(", HIGH),
            _rule(r"auditService|audit_?trail|audit_?logs?\b|AuditLog", MEDIUM),
            _rule(r"\baudit\b", LOW),
        ),
    ),
    SignalPattern(
        type="structured",
        details="Structured logging implementation detected",
        rules=(
            _rule(r"winston\.createLogger\s*\(|pino\s*\(|bunyan\.createLogger\s*\(|structlog\.get_logger\s*\(|logging\.getLogger\s*\(", HIGH),
            _rule(r"\b(winston|pino|bunyan|structlog|loguru|log4j|serilog|logrus)\b|logger\.(info|warn|warning|error|debug)\s*\(", MEDIUM),
            _rule(r"console\.log\s*\(|\bprint\s*\(", LOW),
        ),
        attribute_name="frameworks",
        attribute_regex=_LOGGING_FRAMEWORK_REGEX,
    ),
    SignalPattern(
        type="security",
        details="Security event logging detected (authentication failures, suspicious activity)",
        rules=(
            _rule(r"log\w*\.\w+\(.*(login|auth\w*)\s*(fail|denied|attempt)", HIGH),
            _rule(r"security_?event|securityLog|failed_?login", MEDIUM),
        ),
    ),
    SignalPattern(
        type="access",
        details="HTTP access logging detected",
        rules=(
            _rule(r"morgan\s*\(|access_log\s+\S+|AccessLogMiddleware", HIGH),
            _rule(r"\bmorgan\b|access_?log", MEDIUM),
        ),
        attribute_name="frameworks",
        attribute_regex=_LOGGING_FRAMEWORK_REGEX,
    ),
)

# ── Access control ────────────────────────────────────────────────

ACCESS_CONTROL_PATTERNS: tuple[SignalPattern, ...] = (
    SignalPattern(
        type="rbac",
        details="Role-Based Access Control (RBAC) implementation detected",
        rules=(
            _rule(r"hasRole\s*\(|checkRole\s*\(|requireRole\s*\(|@roles_required|has_role\s*\(|@Roles\s*\(", HIGH),
            _rule(r"\brbac\b|role[-_ ]based|userRole|user\.role\b", MEDIUM),
            _rule(r"\broles?\b", LOW),
        ),
    ),
    SignalPattern(
        type="permissions",
        details="Permission checks detected",
        rules=(
            _rule(r"requirePermission\s*\(|hasPermission\s*\(|@permission_required|has_perm\s*\(|checkPermission\s*\(", HIGH),
            _rule(r"permission_classes|PERMISSIONS\s*=|\bpermissions?\s*:", MEDIUM),
            _rule(r"\bpermission", LOW),
        ),
    ),
    SignalPattern(
        type="middleware",
        details="Authentication/authorization middleware detected",
        rules=(
            _rule(r"requireAuth\s*\(?|isAuthenticated\s*\(|@login_required|ensureLoggedIn|authMiddleware|Depends\(\s*get_current_user", HIGH),
            _rule(r"auth\w*[-_ ]?middleware|protect\w*\s*route", MEDIUM),
        ),
    ),
    SignalPattern(
        type="policy",
        details="Policy engine based authorization detected",
        rules=(
            _rule(r"\bcasbin\b|newEnforcer\s*\(|\bopa\b.*eval|@casl/ability|oso\.authorize\s*\(", HIGH),
            _rule(r"\bpolicy\.(allow|deny|evaluate)|authorize\s*\(", MEDIUM),
        ),
    ),
    SignalPattern(
        type="acl",
        details="Access control list (ACL) detected",
        rules=(
            _rule(r"\bacl\.(check|isAllowed|allow)\s*\(", HIGH),
            _rule(r"\bacl\b|access_control_list", MEDIUM),
        ),
    ),
)

# ── CI/CD ─────────────────────────────────────────────────────────

SECURITY_SCANNING_REGEX = re.compile(
    r"codeql|snyk|semgrep|trivy|sonar(qube|cloud)|security[-_ ]scan|\bsast\b|dependabot|bandit|checkov",
    re.IGNORECASE,
)
SECRET_SCANNING_REGEX = re.compile(
    r"trufflehog|gitleaks|detect-secrets|secret[-_ ]scan",
    re.IGNORECASE,
)
DEPENDENCY_SCANNING_REGEX = re.compile(
    r"npm audit|yarn audit|pnpm audit|pip-audit|safety check|dependency[-_ ]check|dependency-review|osv-scanner|govulncheck|bundle[-_ ]audit",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class CICDProvider:
    """A CI/CD system recognised by where its definition lives."""

    type: str
    label: str
    matches: Callable[[FileEntry], bool] = field(compare=False)


def _is_yaml(entry: FileEntry) -> bool:
    return entry.extension in (".yml", ".yaml")


CICD_PROVIDERS: tuple[CICDProvider, ...] = (
    CICDProvider(
        "github_actions",
        "GitHub Actions",
        lambda e: ".github/workflows/" in e.lower_path and _is_yaml(e),
    ),
    CICDProvider(
        "gitlab_ci",
        "GitLab CI",
        lambda e: e.file_name.lower() == ".gitlab-ci.yml" or ".gitlab-ci" in e.lower_path,
    ),
    CICDProvider("jenkins", "Jenkins", lambda e: e.file_name.lower() == "jenkinsfile"),
    CICDProvider(
        "circleci",
        "CircleCI",
        lambda e: ".circleci/" in e.lower_path and _is_yaml(e),
    ),
    CICDProvider("travis", "Travis CI", lambda e: e.file_name.lower() == ".travis.yml"),
    CICDProvider(
        "azure_devops",
        "Azure DevOps",
        lambda e: e.file_name.lower() in ("azure-pipelines.yml", "azure-pipelines.yaml")
        or ".azure-pipelines/" in e.lower_path,
    ),
)

# ── Secrets ───────────────────────────────────────────────────────

REDACTED = "[REDACTED]"

# Values that are placeholders or interpolations rather than literals
_NOT_PLACEHOLDER = r"(?!\$\{|\{\{|<|%\(|changeme|your[_-])"


@dataclass(frozen=True)
class SecretPattern:
    """A hardcoded-secret shape. The ``value`` group is what gets redacted."""

    type: str
    severity: Severity
    confidence: Confidence
    regex: re.Pattern


def _secret(type_: str, severity: Severity, confidence: Confidence, pattern: str) -> SecretPattern:
    return SecretPattern(type_, severity, confidence, re.compile(pattern, re.IGNORECASE))


# Severity ordering: private key > API key > password/secret > generic token > URL credential
SECRET_PATTERNS: tuple[SecretPattern, ...] = (
    _secret(
        "private_key",
        Severity.CRITICAL,
        HIGH,
        r"-----BEGIN (?:RSA |EC |DSA |OPENSSH |ENCRYPTED )?PRIVATE KEY-----(?P<value>.*)",
    ),
    _secret(
        "api_key",
        Severity.HIGH,
        HIGH,
        r"api[_-]?key['\"]?\s*[:=]\s*['\"](?P<value>" + _NOT_PLACEHOLDER + r"[A-Za-z0-9_\-]{20,})['\"]"
        r"|(?P<aws>AKIA[0-9A-Z]{16})|(?P<stripe>sk_live_[0-9a-zA-Z]{20,})|(?P<github>ghp_[A-Za-z0-9]{36})",
    ),
    _secret(
        "password",
        Severity.HIGH,
        MEDIUM,
        r"passw(?:or)?d['\"]?\s*[:=]\s*['\"](?P<value>" + _NOT_PLACEHOLDER + r"[^'\"\s]{8,})['\"]",
    ),
    _secret(
        "hardcoded_secret",
        Severity.HIGH,
        MEDIUM,
        r"secret(?:_key)?['\"]?\s*[:=]\s*['\"](?P<value>" + _NOT_PLACEHOLDER + r"[A-Za-z0-9_\-/+=]{20,})['\"]",
    ),
    _secret(
        "token",
        Severity.MEDIUM,
        MEDIUM,
        r"token['\"]?\s*[:=]\s*['\"](?P<value>" + _NOT_PLACEHOLDER + r"[A-Za-z0-9_\-.]{20,})['\"]",
    ),
    _secret(
        "credential_url",
        Severity.LOW,
        LOW,
        r"\b[a-z][a-z0-9+.\-]*://[^\s:/@'\"]+:(?P<value>" + _NOT_PLACEHOLDER + r"[^\s@/'\"]+)@",
    ),
)

SECRET_RECOMMENDATIONS = {
    "private_key": "Remove the private key from the repository, revoke it, and load keys from a secret manager or KMS",
    "api_key": "Move the API key to environment variables or a secret manager and rotate the exposed key",
    "password": "Move the password to environment variables or a secret manager and rotate it",
    "hardcoded_secret": "Move the secret to environment variables or a secret manager and rotate it",
    "token": "Move the token to environment variables or a secret manager and revoke the exposed token",
    "credential_url": "Remove credentials embedded in connection URLs and inject them at runtime",
}
