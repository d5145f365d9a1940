class ResolutionError(Exception):
    """Base class for errors raised by the resolution package."""


class ConfigError(ResolutionError):
    """A bot or service configuration failed validation."""


class ConfigStoreError(ResolutionError):
    """Bot configuration could not be loaded for an organization."""


class AIResponderError(ResolutionError):
    """The generative responder failed or returned an unusable reply."""


class KnowledgeSearchError(ResolutionError):
    """The knowledge-base search collaborator failed."""
