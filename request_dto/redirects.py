"""
Failure location resolution.

A schema may name where a client goes after a failed validation: a literal
path, a named route (Flask endpoint) or a view function. Without any of them
the client is sent back to the previous location.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Optional, Union
from urllib.parse import urljoin

import structlog
from flask import current_app, has_request_context, request, session, url_for

from request_dto.exceptions import RedirectResolutionError

logger = structlog.get_logger("request_dto.redirects")

PREVIOUS_URL_SESSION_KEY = "_previous_url"

ViewReference = Union[str, Callable[..., Any]]


class BaseRedirector(ABC):
    """Turns failure location hints into URLs."""

    @abstractmethod
    def to(self, path: str) -> str:
        """URL for a literal path."""

    @abstractmethod
    def route(self, name: str) -> str:
        """URL for a named route."""

    @abstractmethod
    def action(self, view: ViewReference) -> str:
        """URL of the route served by a view function."""

    @abstractmethod
    def previous(self) -> str:
        """URL of the location the client came from."""


def resolve_redirect_url(
    redirector: BaseRedirector,
    redirect: Optional[str] = None,
    route: Optional[str] = None,
    action: Optional[ViewReference] = None
) -> str:
    """
    Resolve the failure location by priority.

    An explicit path wins over a named route, which wins over a view
    reference; with none of them the previous location is used.

    Args:
        redirector: Location resolver
        redirect: Literal path
        route: Route (endpoint) name
        action: View function or its dotted name

    Returns:
        URL to send the client to
    """
    if redirect:
        return redirector.to(redirect)
    if route:
        return redirector.route(route)
    if action:
        return redirector.action(action)
    return redirector.previous()


class FlaskRedirector(BaseRedirector):
    """
    Location resolver for the active Flask request.

    Args:
        fallback_url: Used by previous() when neither the Referer header nor
            the session know where the client came from
        external: Build absolute URLs instead of paths
    """

    def __init__(self, fallback_url: str = "/", external: bool = False) -> None:
        self.fallback_url = fallback_url
        self.external = external

    def to(self, path: str) -> str:
        if self.external and has_request_context():
            return urljoin(request.host_url, path)
        return path

    def route(self, name: str) -> str:
        return url_for(name, _external=self.external)

    def action(self, view: ViewReference) -> str:
        endpoint = self.endpoint_for(view)
        if endpoint is None:
            raise RedirectResolutionError(
                f"No route is served by view '{self._describe(view)}'",
                details={'view': self._describe(view)}
            )
        return url_for(endpoint, _external=self.external)

    def previous(self) -> str:
        if has_request_context():
            if request.referrer:
                return request.referrer
            remembered = session.get(PREVIOUS_URL_SESSION_KEY)
            if remembered:
                return remembered
        return self.to(self.fallback_url)

    @staticmethod
    def _describe(view: ViewReference) -> str:
        if isinstance(view, str):
            return view
        qualname = getattr(view, '__qualname__', None) or repr(view)
        return f"{getattr(view, '__module__', '')}.{qualname}"

    def endpoint_for(self, view: ViewReference) -> Optional[str]:
        """
        Find the endpoint registered for a view.

        Args:
            view: View function, or its ``module.qualname`` string

        Returns:
            Endpoint name, or None when no registered view matches
        """
        wanted = self._describe(view)
        for endpoint, function in current_app.view_functions.items():
            if function is view:
                return endpoint
            wrapped = getattr(function, '__wrapped__', None)
            if wrapped is not None and wrapped is view:
                return endpoint
            if self._describe(wrapped or function) == wanted:
                return endpoint
        logger.debug("No endpoint found for view", view=wanted)
        return None
