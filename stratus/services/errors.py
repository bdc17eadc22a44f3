class StratusException(Exception):
    pass


class NotFoundException(StratusException):
    pass


class IntegrityException(StratusException):
    pass


class ConfigParseException(StratusException):
    """The infra config document is not well-formed or has the wrong shape."""


class ConfigValidationException(StratusException):
    """The infra config document parsed but is semantically invalid."""


class TemplateRenderException(StratusException):
    pass


class PermissionDeniedException(StratusException):
    pass


class PersistenceException(StratusException):
    pass


class ProvisioningException(StratusException):
    """A chart or secret operation failed in the background provisioning task."""
