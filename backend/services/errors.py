"""
Error taxonomy for the verification workflow.
Each error carries the HTTP status the API layer maps it to.
"""


class ProofPanelError(Exception):
    """Base class for errors surfaced to API callers"""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class MissingCodeError(ProofPanelError):
    """OAuth callback invoked without an authorization code"""
    status_code = 400

    def __init__(self, message: str = "Authorization code is required"):
        super().__init__(message)


class AuthExchangeError(ProofPanelError):
    """Identity provider rejected the authorization code"""
    status_code = 400


class ProfileFetchError(ProofPanelError):
    """Neither the id_token nor the userinfo endpoint produced a profile"""
    status_code = 400


class VerificationFailedError(ProofPanelError):
    """Unexpected failure while recording a verification"""
    status_code = 500


class BatchGateError(ProofPanelError):
    """Dashboard tried to advance while displayed emails are still pending"""
    status_code = 409


class SmtpConfigurationError(ProofPanelError):
    """No SMTP credentials supplied or configured"""
    status_code = 400


class EmailDeliveryError(ProofPanelError):
    """SMTP relay could not be reached or rejected the login"""
    status_code = 500
