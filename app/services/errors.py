class MetaLinkException(Exception):
    pass


class ValidationException(MetaLinkException):
    pass


class ConfigurationException(MetaLinkException):
    pass


class AccountNotDeployedException(MetaLinkException):
    pass


class ProviderException(MetaLinkException):
    """The external provider rejected a call or could not be reached."""
