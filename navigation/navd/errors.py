class NavigationError(Exception):
  """Base class for navigation core errors."""


class PositionError(NavigationError):
  pass


class PermissionDenied(PositionError):
  """Location access refused; a session cannot run without it."""


class PositionUnavailable(PositionError):
  """Transient loss of position; the tracker keeps the last known sample."""


class PositionTimeout(PositionUnavailable):
  pass


class ProviderError(NavigationError):
  """Directions/traffic provider request failed."""


class NoRouteFound(ProviderError):
  pass


class RateLimited(ProviderError):
  pass


class ProviderUnavailable(ProviderError):
  pass


class InvalidPlan(NavigationError):
  pass


class InvalidTransition(NavigationError):
  pass


class AnnouncementFailure(NavigationError):
  pass
