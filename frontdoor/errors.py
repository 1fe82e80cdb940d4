class StartupError(Exception):
    """Configuration problem that must stop the process before it listens."""


class ManifestError(StartupError):
    pass


class UpstreamConfigError(StartupError):
    pass


class HeaderPolicyError(StartupError):
    pass
