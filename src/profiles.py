"""
AWS profile discovery and identity verification.
"""

import logging
import os
import subprocess
from typing import Callable, Dict, List, Optional

import boto3
from botocore.configloader import raw_config_parse
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConfigParseError,
    NoCredentialsError,
    PartialCredentialsError,
    ProfileNotFound,
    SSOError,
    TokenRetrievalError,
)

from clients import RetryPolicy, error_code, error_message
from errors import AuthError, AuthFailureKind, NoIdentitySourceError
from models import CallerIdentity, IdentityContext

logger = logging.getLogger(__name__)

EXPIRED_ERROR_CODES = {
    "ExpiredToken",
    "ExpiredTokenException",
    "RequestExpired",
    "TokenRefreshRequired",
}
FEDERATION_KEYS = ("sso_start_url", "sso_session")
PREVIEW_KEYS = (
    "region",
    "sso_session",
    "sso_start_url",
    "sso_account_id",
    "sso_role_name",
    "role_arn",
    "source_profile",
    "credential_process",
)


def default_config_file() -> str:
    return os.path.expanduser(os.environ.get("AWS_CONFIG_FILE", "~/.aws/config"))


def default_credentials_file() -> str:
    return os.path.expanduser(
        os.environ.get("AWS_SHARED_CREDENTIALS_FILE", "~/.aws/credentials")
    )


def classify_auth_error(exc: Exception, profile: str) -> AuthError:
    """
    Map a botocore failure to a typed authentication error.

    Args:
        exc: Exception raised while calling STS
        profile: Profile being verified

    Returns:
        AuthError with the matching AuthFailureKind
    """
    if isinstance(exc, ProfileNotFound):
        return AuthError(AuthFailureKind.NOT_FOUND, profile, str(exc))
    if isinstance(exc, (NoCredentialsError, PartialCredentialsError)):
        return AuthError(AuthFailureKind.NO_CREDENTIALS, profile, str(exc))
    if isinstance(exc, (SSOError, TokenRetrievalError)):
        return AuthError(AuthFailureKind.EXPIRED, profile, str(exc))
    if isinstance(exc, ClientError):
        code = error_code(exc)
        if code in EXPIRED_ERROR_CODES:
            return AuthError(AuthFailureKind.EXPIRED, profile, error_message(exc))
        return AuthError(AuthFailureKind.UNKNOWN, profile, f"{code}: {error_message(exc)}")
    return AuthError(AuthFailureKind.UNKNOWN, profile, str(exc))


def run_sso_login(profile: str) -> bool:
    """
    Run the AWS SSO browser login for a profile.

    Returns:
        True if the login command succeeded
    """
    try:
        result = subprocess.run(["aws", "sso", "login", "--profile", profile])
    except FileNotFoundError:
        logger.error("❌ AWS CLI not found; cannot run 'aws sso login'")
        return False
    return result.returncode == 0


class ProfileResolver:
    """Discovers AWS profiles and verifies that one is usable."""

    def __init__(
        self,
        config_file: Optional[str] = None,
        credentials_file: Optional[str] = None,
        session_factory: Callable = boto3.session.Session,
        login_runner: Callable[[str], bool] = run_sso_login,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        """
        Initialize the resolver.

        Args:
            config_file: Shared config file (defaults to $AWS_CONFIG_FILE or ~/.aws/config)
            credentials_file: Shared credentials file
            session_factory: Builds a boto3 session for a profile name
            login_runner: Runs the external re-authentication for a profile
            retry_policy: Timeouts for the STS call
        """
        self.config_file = config_file or default_config_file()
        self.credentials_file = credentials_file or default_credentials_file()
        self.session_factory = session_factory
        self.login_runner = login_runner
        self.retry_policy = retry_policy or RetryPolicy()
        self.active: Optional[IdentityContext] = None

    def _read(self, path: str) -> Dict[str, Dict[str, str]]:
        try:
            return raw_config_parse(path, parse_subsections=False)
        except ConfigParseError as e:
            raise NoIdentitySourceError(f"Cannot parse {path}: {e}") from e

    def list_identity_contexts(self) -> List[IdentityContext]:
        """
        Discover configured profiles from the config and credentials files.

        Returns:
            Profiles sorted by name, first-seen source kept on duplicates

        Raises:
            NoIdentitySourceError: If no file exists or no profile is defined
        """
        has_config = os.path.isfile(self.config_file)
        has_credentials = os.path.isfile(self.credentials_file)
        if not has_config and not has_credentials:
            raise NoIdentitySourceError(
                "AWS configuration files not found. "
                "Run 'aws configure' or 'aws configure sso' to set up AWS CLI"
            )

        found: Dict[str, IdentityContext] = {}

        if has_config:
            for section, settings in self._read(self.config_file).items():
                if section == "default":
                    name = "default"
                elif section.startswith("profile "):
                    name = section[len("profile "):].strip()
                else:
                    continue
                if name and name not in found:
                    found[name] = IdentityContext(
                        name=name,
                        source="config",
                        federated=any(k in settings for k in FEDERATION_KEYS),
                        settings=dict(settings),
                    )

        if has_credentials:
            for section, settings in self._read(self.credentials_file).items():
                name = section.strip()
                if name and name not in found:
                    found[name] = IdentityContext(
                        name=name, source="credentials", settings=dict(settings)
                    )

        if not found:
            raise NoIdentitySourceError(
                "No AWS profiles found. Use 'aws configure', 'aws configure sso' "
                "or export AWS_ACCESS_KEY_ID/AWS_SECRET_ACCESS_KEY"
            )

        contexts = sorted(found.values(), key=lambda ctx: ctx.name)
        logger.info(f"✓ Found {len(contexts)} AWS profile(s)")
        return contexts

    def _caller_identity(self, ctx: IdentityContext) -> CallerIdentity:
        try:
            session = self.session_factory(profile_name=ctx.name)
            sts = session.client("sts", config=self.retry_policy.botocore_config())
            data = sts.get_caller_identity()
        except (BotoCoreError, ClientError) as e:
            raise classify_auth_error(e, ctx.name) from e
        return CallerIdentity(
            account_id=str(data.get("Account", "")),
            principal_arn=str(data.get("Arn", "")),
            user_id=str(data.get("UserId", "")),
        )

    def verify(self, ctx: IdentityContext) -> CallerIdentity:
        """
        Verify a profile and make it the active identity.

        An expired federated (SSO) profile gets one automatic login attempt
        followed by one re-verification; every other failure is raised.

        Args:
            ctx: Profile to verify

        Returns:
            CallerIdentity

        Raises:
            AuthError: If the profile is unusable
        """
        logger.info(f"Checking AWS authentication for profile: {ctx.name}")
        try:
            identity = self._caller_identity(ctx)
        except AuthError as e:
            if e.kind is not AuthFailureKind.EXPIRED or not ctx.federated:
                raise
            logger.info("Detected SSO profile with expired session. Attempting automatic login...")
            if not self.login_runner(ctx.name):
                logger.error("❌ SSO login failed")
                raise
            logger.info("✓ SSO login successful")
            identity = self._caller_identity(ctx)

        self.active = ctx
        logger.info("✓ AWS authentication successful")
        logger.info(f"  Account ID: {identity.account_id}")
        logger.info(f"  User/Role: {identity.principal_arn}")
        return identity

    def describe(self, ctx: IdentityContext) -> str:
        """Preview text for the profile selection screen."""
        lines = [
            f"Profile: {ctx.name}",
            "",
            f"  Source:      {ctx.source}",
            f"  Federated:   {'yes (SSO)' if ctx.federated else 'no'}",
        ]
        for key in PREVIEW_KEYS:
            if key in ctx.settings:
                lines.append(f"  {key + ':':<20} {ctx.settings[key]}")
        if not ctx.settings:
            lines.append("")
            lines.append("Profile configuration not available")
        return "\n".join(lines)

    @staticmethod
    def auth_guidance(error: AuthError) -> List[str]:
        """Remediation hints for an authentication failure."""
        if error.kind is AuthFailureKind.NOT_FOUND:
            return [f"AWS profile '{error.profile}' not found", "Please check your AWS configuration"]
        if error.kind is AuthFailureKind.NO_CREDENTIALS:
            return [
                f"No credentials configured for profile '{error.profile}'",
                f"Please run 'aws configure --profile {error.profile}' to set up credentials",
            ]
        if error.kind is AuthFailureKind.EXPIRED:
            return [
                "AWS credentials have expired",
                "Please refresh your credentials and try again",
            ]
        return ["Authentication failed with unknown error", f"Error details: {error.detail}"]
